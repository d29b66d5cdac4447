import logging
import os
import fcntl
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from pydantic import ValidationError
from .models import SyncState, LibraryCacheEntry, ScrobbledTrack, LastFmUser
from .config import settings

logger = logging.getLogger(__name__)

class StateManager:
    """Owns the Snapshot Cache and the Remote Log Mirror on disk."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.state = SyncState()
        self.read_only = False
        self._load()

    def _load(self):
        if not self.path.exists():
            logger.info(f"No state file found at {self.path}, creating new.")
            return

        try:
            self.state = SyncState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error(f"Failed to load state: {e}. Starting fresh.", exc_info=True)

    def save(self):
        if not settings.PERSIST_ENABLED or self.read_only:
            return

        tmp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding="utf-8") as f:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning("Could not acquire lock for state save. Skipping save cycle.")
                    return

                try:
                    f.write(self.state.model_dump_json(indent=2))
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)

            os.replace(tmp_path, self.path)

        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")
            # If we can't write, switch to read-only to be safe for this run
            self.read_only = True

    # Snapshot Cache

    def is_library_empty(self) -> bool:
        return not self.state.library

    def get_entry(self, track_id: str) -> Optional[LibraryCacheEntry]:
        return self.state.library.get(track_id)

    def library_snapshot(self) -> Dict[str, LibraryCacheEntry]:
        """Shallow copy so a diff pass never sees its own uncommitted writes."""
        return dict(self.state.library)

    def commit_entries(self, entries: Iterable[LibraryCacheEntry]) -> int:
        count = 0
        for entry in entries:
            self.state.library[entry.track_id] = entry
            count += 1
        return count

    def prune_library(self, cutoff: float) -> int:
        """Drop entries last synced before `cutoff`. Returns the number removed."""
        stale = [k for k, v in self.state.library.items() if v.last_synced_at < cutoff]
        for key in stale:
            del self.state.library[key]
        return len(stale)

    def clear_library(self):
        self.state.library.clear()
        self.save()

    # Remote Log Mirror

    def upsert_history(self, scrobbles: Iterable[ScrobbledTrack]):
        """Returns (inserted, updated)."""
        inserted = updated = 0
        for scrobble in scrobbles:
            existing = self.state.history.get(scrobble.scrobble_id)
            if existing is None:
                self.state.history[scrobble.scrobble_id] = scrobble
                inserted += 1
            else:
                # artwork and permalink may change upstream
                existing.artwork_url = scrobble.artwork_url
                existing.url = scrobble.url
                existing.album = scrobble.album or existing.album
                updated += 1
        return inserted, updated

    def recent_history(self, limit: Optional[int] = None) -> List[ScrobbledTrack]:
        items = sorted(self.state.history.values(), key=lambda s: s.timestamp, reverse=True)
        return items[:limit] if limit else items

    def set_user_info(self, user: LastFmUser):
        self.state.user_info = user

    def clear_history(self):
        self.state.history.clear()
        self.state.user_info = None
        self.save()
