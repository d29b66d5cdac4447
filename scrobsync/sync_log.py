import json
import logging
import os
from pathlib import Path
from typing import List, Optional
from pydantic import TypeAdapter, ValidationError
from .models import SyncLogEntry, SyncEvent, SyncTrigger
from .config import settings

logger = logging.getLogger(__name__)

_entries_adapter = TypeAdapter(List[SyncLogEntry])

class SyncLog:
    """
    Persistent log of sync executions, most recent first.
    Only entries that scrobbled something, failed or expired are persisted; every
    event still goes to the process log.
    """

    def __init__(self, path: str, max_entries: Optional[int] = None):
        self.path = Path(path)
        self.max_entries = max_entries or settings.SYNC_LOG_MAX_ENTRIES

    def record(self, event: SyncEvent, scrobbles_count: int = 0, message: Optional[str] = None,
               trigger: SyncTrigger = SyncTrigger.MANUAL) -> Optional[SyncLogEntry]:
        logger.info(f"Sync ({trigger.value}): {event.value}, scrobbles: {scrobbles_count}, message: {message or 'none'}")

        if scrobbles_count <= 0 and event.is_success:
            return None

        entry = SyncLogEntry(event=event, scrobbles_count=scrobbles_count, message=message, trigger=trigger)
        entries = self.entries()
        entries.insert(0, entry)
        self._save(entries[:self.max_entries])
        return entry

    def entries(self) -> List[SyncLogEntry]:
        if not self.path.exists():
            return []
        try:
            return _entries_adapter.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.error(f"Failed to decode sync log: {e}")
            return []

    def last_entry(self) -> Optional[SyncLogEntry]:
        entries = self.entries()
        return entries[0] if entries else None

    def clear(self):
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to clear sync log: {e}")

    def _save(self, entries: List[SyncLogEntry]):
        if not settings.PERSIST_ENABLED:
            return
        tmp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding="utf-8") as f:
                json.dump([e.model_dump(mode="json") for e in entries], f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save sync log to {self.path}: {e}")
