import hashlib
import logging
import httpx
from typing import Any, Dict, List, Optional
from ..config import settings
from ..errors import ApiError, AuthenticationError, NotAuthenticatedError, TransportError
from ..models import CandidatePlay, LastFmUser, RemoteScrobble, SubmissionResult

logger = logging.getLogger(__name__)

# auth failed, invalid session, invalid api key, unauthorized token, expired token, suspended key
AUTH_ERROR_CODES = {4, 9, 10, 14, 15, 26}
IMAGE_SIZES = ["small", "medium", "large", "extralarge", "mega"]
MAX_RECENT_LIMIT = 200

def _to_int(value: Any) -> int:
    """Last.fm returns counters as ints or numeric strings depending on the endpoint."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0

def _text(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("#text") or value.get("name") or ""
    return value or ""

def sign(params: Dict[str, str], secret: str) -> str:
    """api_sig: md5 of the sorted name/value pairs followed by the shared secret."""
    base = "".join(f"{k}{params[k]}" for k in sorted(params) if k not in ("format", "callback"))
    return hashlib.md5((base + secret).encode("utf-8")).hexdigest()

class LastFmClient:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.client = http_client or httpx.AsyncClient(
            base_url=settings.LASTFM_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS
        )
        self.api_key = settings.LASTFM_API_KEY
        self.api_secret = settings.LASTFM_API_SECRET
        self.session_key = settings.LASTFM_SESSION_KEY
        self.username = settings.LASTFM_USERNAME

    @property
    def is_authenticated(self) -> bool:
        return bool(self.api_key and self.api_secret and self.session_key)

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, params: Dict[str, str], signed: bool = False, post: bool = False) -> Dict:
        payload = {"method": method, "api_key": self.api_key, **params}
        if signed:
            payload["sk"] = self.session_key
            payload["api_sig"] = sign(payload, self.api_secret)
        payload["format"] = "json"

        try:
            if post:
                resp = await self.client.post("", data=payload)
            else:
                resp = await self.client.get("", params=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and "error" in data:
            code = _to_int(data.get("error"))
            message = data.get("message") or "Unknown error"
            if code in AUTH_ERROR_CODES:
                raise AuthenticationError(code, message)
            raise ApiError(code, message)

        if resp.status_code in (401, 403):
            raise AuthenticationError(resp.status_code, f"{method} rejected with HTTP {resp.status_code}")
        if not resp.is_success:
            raise TransportError(f"{method} returned HTTP {resp.status_code}", status_code=resp.status_code)
        if not isinstance(data, dict):
            raise TransportError(f"Invalid response from Last.fm for {method}", status_code=resp.status_code)
        return data

    async def scrobble(self, plays: List[CandidatePlay]) -> SubmissionResult:
        """
        Submits up to one batch in a single track.scrobble call.
        Last.fm only reports aggregate accepted/ignored counts for the batch.
        """
        if not plays:
            return SubmissionResult()
        if not self.is_authenticated:
            raise NotAuthenticatedError("Not authenticated with Last.fm")
        if len(plays) > settings.SCROBBLE_BATCH_SIZE:
            raise ValueError(f"Batch of {len(plays)} exceeds the limit of {settings.SCROBBLE_BATCH_SIZE}")

        params: Dict[str, str] = {}
        for i, play in enumerate(plays):
            params[f"artist[{i}]"] = play.artist
            params[f"track[{i}]"] = play.title
            params[f"timestamp[{i}]"] = str(int(play.timestamp))
            if play.album:
                params[f"album[{i}]"] = play.album

        logger.debug(f"Submitting {len(plays)} plays to track.scrobble")
        data = await self._request("track.scrobble", params, signed=True, post=True)
        attrs = data.get("scrobbles", {}).get("@attr", {})
        return SubmissionResult(
            accepted=_to_int(attrs.get("accepted")),
            ignored=_to_int(attrs.get("ignored"))
        )

    async def get_recent_tracks(self, limit: int = 50) -> List[RemoteScrobble]:
        """
        Fetch the user's recent scrobbles, newest first.
        The now-playing entry has no timestamp and is skipped.
        """
        limit = max(1, min(limit, MAX_RECENT_LIMIT))
        data = await self._request("user.getRecentTracks", {"user": self.username, "limit": str(limit)})

        items = data.get("recenttracks", {}).get("track", [])
        # a single result comes back as an object
        if isinstance(items, dict):
            items = [items]

        results = []
        for item in items:
            date = item.get("date")
            if not date or item.get("@attr", {}).get("nowplaying") == "true":
                continue
            uts = _to_int(date.get("uts") if isinstance(date, dict) else date)
            if not uts:
                continue
            results.append(RemoteScrobble(
                title=item.get("name", ""),
                artist=_text(item.get("artist")),
                album=_text(item.get("album")),
                timestamp=float(uts),
                artwork_url=self._largest_image(item.get("image", [])),
                url=item.get("url") or None
            ))
        return results

    async def get_user_info(self) -> Optional[LastFmUser]:
        if not self.username:
            return None
        data = await self._request("user.getInfo", {"user": self.username})
        user = data.get("user")
        if not user:
            return None
        return LastFmUser(
            name=user.get("name", self.username),
            playcount=_to_int(user.get("playcount")),
            artist_count=_to_int(user.get("artist_count")),
            track_count=_to_int(user.get("track_count")),
            album_count=_to_int(user.get("album_count")),
            url=user.get("url")
        )

    @staticmethod
    def _largest_image(images: List[Dict]) -> Optional[str]:
        best = None
        best_rank = -1
        for image in images or []:
            url = image.get("#text")
            if not url:
                continue
            size = image.get("size", "")
            rank = IMAGE_SIZES.index(size) if size in IMAGE_SIZES else 0
            if rank >= best_rank:
                best, best_rank = url, rank
        return best
