import json
import os
import tempfile
import unittest
import httpx
from scrobsync.clients.media_library import MediaLibrary
from scrobsync.clients.network import NetworkMonitor
from scrobsync.errors import LibraryUnavailableError

class TestMediaLibrary(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "library.json")

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, data):
        with open(self.path, "w") as f:
            json.dump(data, f)

    async def test_reads_track_list(self):
        self.write([{"id": "1", "title": "Song", "artist": "Band", "album": "LP", "duration": 201.5,
                     "play_count": 3, "last_played": 1700000000}])
        library = MediaLibrary(self.path)
        self.assertTrue(library.is_authorized())
        tracks = await library.fetch_snapshot()
        self.assertEqual(tracks[0].play_count, 3)
        self.assertEqual(tracks[0].last_played, 1700000000)

    async def test_reads_wrapped_tracks(self):
        self.write({"tracks": [{"id": "1", "title": "Song", "artist": "Band"}]})
        tracks = await MediaLibrary(self.path).fetch_snapshot()
        self.assertIsNone(tracks[0].last_played)
        self.assertEqual(tracks[0].play_count, 0)

    async def test_missing_export_is_unauthorized(self):
        library = MediaLibrary(self.path)
        self.assertFalse(library.is_authorized())
        with self.assertRaises(LibraryUnavailableError):
            await library.fetch_snapshot()

    async def test_null_album_is_read_as_empty(self):
        self.write([
            {"id": "1", "title": "Song", "artist": "Band", "album": "LP", "play_count": 2},
            {"id": "2", "title": "Single", "artist": "Band", "album": None, "play_count": None},
        ])
        tracks = await MediaLibrary(self.path).fetch_snapshot()
        self.assertEqual([t.id for t in tracks], ["1", "2"])
        self.assertEqual(tracks[1].album, "")
        self.assertEqual(tracks[1].play_count, 0)

    async def test_invalid_rows_are_skipped(self):
        self.write([{"title": "no id"}, {"id": "2", "title": "Song", "artist": "Band"}, "junk"])
        with self.assertLogs("scrobsync.clients.media_library", level="WARNING"):
            tracks = await MediaLibrary(self.path).fetch_snapshot()
        self.assertEqual([t.id for t in tracks], ["2"])

    async def test_malformed_export(self):
        self.write({"tracks": "not a list"})
        with self.assertRaises(LibraryUnavailableError):
            await MediaLibrary(self.path).fetch_snapshot()

class TestNetworkMonitor(unittest.IsolatedAsyncioTestCase):
    async def test_any_response_is_online(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        monitor = NetworkMonitor(http_client=http, probe_url="https://probe.test/")
        self.assertTrue(await monitor.is_online(timeout=1))
        await monitor.close()

    async def test_transport_failure_is_offline(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        monitor = NetworkMonitor(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
                                 probe_url="https://probe.test/")
        self.assertFalse(await monitor.is_online(timeout=1))

if __name__ == '__main__':
    unittest.main()
