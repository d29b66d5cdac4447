import hashlib
import unittest
from urllib.parse import parse_qs
import httpx
from scrobsync.clients.lastfm_client import LastFmClient, sign
from scrobsync.config import settings
from scrobsync.errors import ApiError, AuthenticationError, TransportError
from scrobsync.models import CandidatePlay

def make_client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://lastfm.test/2.0/")
    client = LastFmClient(http_client=http)
    client.api_key = "key"
    client.api_secret = "secret"
    client.session_key = "session"
    client.username = "listener"
    return client

class TestSignature(unittest.TestCase):
    def test_sorted_params_then_secret_excluding_format(self):
        expected = hashlib.md5("api_keykeymethodauth.getSessiontokentokSECRET".encode()).hexdigest()
        params = {"method": "auth.getSession", "token": "tok", "api_key": "key", "format": "json"}
        self.assertEqual(sign(params, "SECRET"), expected)

class TestLastFmClient(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        settings.SCROBBLE_BATCH_SIZE = 50

    async def test_scrobble_sends_indexed_fields(self):
        seen = {}

        def handler(request: httpx.Request):
            seen.update({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
            seen["http_method"] = request.method
            return httpx.Response(200, json={"scrobbles": {"@attr": {"accepted": "2", "ignored": 0}}})

        client = make_client(handler)
        plays = [
            CandidatePlay(track_id="1", title="One", artist="Band", album="LP", timestamp=1700000000.7),
            CandidatePlay(track_id="2", title="Two", artist="Band", album="", timestamp=1699999800),
        ]
        result = await client.scrobble(plays)

        self.assertEqual((result.accepted, result.ignored), (2, 0))
        self.assertEqual(seen["http_method"], "POST")
        self.assertEqual(seen["method"], "track.scrobble")
        self.assertEqual(seen["artist[0]"], "Band")
        self.assertEqual(seen["track[1]"], "Two")
        self.assertEqual(seen["timestamp[0]"], "1700000000")
        self.assertEqual(seen["album[0]"], "LP")
        self.assertNotIn("album[1]", seen)
        self.assertEqual(seen["sk"], "session")
        self.assertEqual(seen["format"], "json")
        self.assertIn("api_sig", seen)
        await client.close()

    async def test_scrobble_accepts_integer_counts(self):
        client = make_client(lambda r: httpx.Response(200, json={"scrobbles": {"@attr": {"accepted": 1, "ignored": "1"}}}))
        result = await client.scrobble([CandidatePlay(track_id="1", title="a", artist="b", timestamp=1.0)] * 2)
        self.assertEqual((result.accepted, result.ignored), (1, 1))

    async def test_invalid_session_is_authentication_error(self):
        client = make_client(lambda r: httpx.Response(403, json={"error": 9, "message": "Invalid session key"}))
        with self.assertRaises(AuthenticationError) as ctx:
            await client.scrobble([CandidatePlay(track_id="1", title="a", artist="b", timestamp=1.0)])
        self.assertEqual(ctx.exception.code, 9)

    async def test_other_api_error(self):
        client = make_client(lambda r: httpx.Response(200, json={"error": 29, "message": "Rate limit exceeded"}))
        with self.assertRaises(ApiError) as ctx:
            await client.get_recent_tracks()
        self.assertNotIsInstance(ctx.exception, AuthenticationError)

    async def test_server_error_is_transport_error(self):
        client = make_client(lambda r: httpx.Response(503, text="unavailable"))
        with self.assertRaises(TransportError) as ctx:
            await client.get_recent_tracks()
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_connection_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = make_client(handler)
        with self.assertRaises(TransportError):
            await client.scrobble([CandidatePlay(track_id="1", title="a", artist="b", timestamp=1.0)])

    async def test_recent_tracks_skips_now_playing_and_picks_largest_image(self):
        seen = {}

        def handler(request: httpx.Request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"recenttracks": {"track": [
                {
                    "name": "Live", "artist": {"#text": "Band"}, "album": {"#text": "LP"},
                    "@attr": {"nowplaying": "true"}, "image": []
                },
                {
                    "name": "Done", "artist": {"#text": "Band"}, "album": {"#text": "LP"},
                    "date": {"uts": "1700000000", "#text": "14 Nov 2023"},
                    "url": "https://www.last.fm/music/Band/_/Done",
                    "image": [
                        {"size": "small", "#text": "http://img/s.png"},
                        {"size": "extralarge", "#text": "http://img/xl.png"},
                        {"size": "large", "#text": "http://img/l.png"},
                    ]
                }
            ]}})

        client = make_client(handler)
        scrobbles = await client.get_recent_tracks(limit=500)
        self.assertEqual(seen["limit"], "200")
        self.assertEqual(seen["user"], "listener")
        self.assertEqual(len(scrobbles), 1)
        self.assertEqual(scrobbles[0].title, "Done")
        self.assertEqual(scrobbles[0].timestamp, 1700000000)
        self.assertEqual(scrobbles[0].artwork_url, "http://img/xl.png")
        self.assertEqual(scrobbles[0].url, "https://www.last.fm/music/Band/_/Done")

    async def test_single_recent_track_object(self):
        body = {"recenttracks": {"track": {"name": "Solo", "artist": {"#text": "X"}, "album": {"#text": ""},
                                           "date": {"uts": "5"}, "image": []}}}
        client = make_client(lambda r: httpx.Response(200, json=body))
        scrobbles = await client.get_recent_tracks()
        self.assertEqual([s.title for s in scrobbles], ["Solo"])
        self.assertIsNone(scrobbles[0].artwork_url)

    async def test_user_info(self):
        body = {"user": {"name": "listener", "playcount": "12345", "artist_count": "456",
                         "track_count": "2345", "album_count": "789", "url": "https://www.last.fm/user/listener"}}
        client = make_client(lambda r: httpx.Response(200, json=body))
        user = await client.get_user_info()
        self.assertEqual(user.playcount, 12345)
        self.assertEqual(user.album_count, 789)

if __name__ == '__main__':
    unittest.main()
