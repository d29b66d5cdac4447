import time
import uuid
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Optional

class LibraryTrack(BaseModel):
    """One song as reported by the media library export."""
    id: str
    title: str
    artist: str
    album: str = ""
    duration: Optional[float] = None
    play_count: int = 0
    last_played: Optional[float] = None  # unix seconds
    artwork: Optional[str] = None  # base64 blob

    @field_validator("album", mode="before")
    @classmethod
    def _empty_album(cls, v):
        return "" if v is None else v

    @field_validator("play_count", mode="before")
    @classmethod
    def _zero_play_count(cls, v):
        return 0 if v is None else v

class LibraryCacheEntry(BaseModel):
    track_id: str
    title: str
    artist: str
    album: str = ""
    artwork: Optional[str] = None
    duration: float = 0.0
    play_count: int = 0
    last_played: Optional[float] = None
    last_synced_at: float = 0.0

    @classmethod
    def from_track(cls, track: LibraryTrack, synced_at: float) -> "LibraryCacheEntry":
        return cls(
            track_id=track.id,
            title=track.title,
            artist=track.artist,
            album=track.album,
            artwork=track.artwork,
            duration=track.duration or 0.0,
            play_count=track.play_count,
            last_played=track.last_played,
            last_synced_at=synced_at
        )

class CandidatePlay(BaseModel):
    track_id: str
    title: str
    artist: str
    album: str = ""
    timestamp: float

class SubmissionResult(BaseModel):
    accepted: int = 0
    ignored: int = 0

class RemoteScrobble(BaseModel):
    title: str
    artist: str
    album: str = ""
    timestamp: float
    artwork_url: Optional[str] = None
    url: Optional[str] = None

class ScrobbledTrack(BaseModel):
    """Remote Log Mirror entry, keyed by scrobble_id."""
    scrobble_id: str
    title: str
    artist: str
    album: str = ""
    timestamp: float
    artwork_url: Optional[str] = None
    url: Optional[str] = None

    @staticmethod
    def generate_id(artist: str, title: str, timestamp: float) -> str:
        return f"{artist}-{title}-{int(timestamp)}"

    @classmethod
    def from_remote(cls, scrobble: RemoteScrobble) -> "ScrobbledTrack":
        return cls(
            scrobble_id=cls.generate_id(scrobble.artist, scrobble.title, scrobble.timestamp),
            **scrobble.model_dump()
        )

class LastFmUser(BaseModel):
    name: str
    playcount: int = 0
    artist_count: int = 0
    track_count: int = 0
    album_count: int = 0
    url: Optional[str] = None

class SyncEvent(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    SKIPPED_NO_NETWORK = "skipped_no_network"
    SKIPPED_NOT_AUTHENTICATED = "skipped_not_authenticated"

    @property
    def is_success(self) -> bool:
        return self not in (SyncEvent.FAILED, SyncEvent.EXPIRED)

class SyncTrigger(str, Enum):
    MANUAL = "manual"
    BACKGROUND = "background"

class SyncLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=time.time)
    event: SyncEvent
    scrobbles_count: int = 0
    message: Optional[str] = None
    trigger: SyncTrigger = SyncTrigger.MANUAL

class SyncResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    accepted_count: int = 0
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

class SyncState(BaseModel):
    library: Dict[str, LibraryCacheEntry] = Field(default_factory=dict)
    history: Dict[str, ScrobbledTrack] = Field(default_factory=dict)
    user_info: Optional[LastFmUser] = None
    last_prune_at: float = 0.0
    last_successful_sync: float = 0.0

class DiffResult(BaseModel):
    """Output of one diff pass: plays to submit plus the cache rows to commit."""
    candidates: List[CandidatePlay] = Field(default_factory=list)
    updates: Dict[str, LibraryCacheEntry] = Field(default_factory=dict)
    first_sync: bool = False
