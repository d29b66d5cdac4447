import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional
from pydantic import ValidationError
from ..config import settings
from ..errors import LibraryUnavailableError
from ..models import LibraryTrack

logger = logging.getLogger(__name__)

class MediaLibrary:
    """
    Reads the device library from a JSON export: either a list of tracks or
    an object with a "tracks" list. Each track carries id, title, artist,
    album, duration, play_count, last_played (unix seconds) and optional
    base64 artwork. Rows that fail validation are skipped.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.LIBRARY_SNAPSHOT_PATH)

    def is_authorized(self) -> bool:
        return self.path.is_file() and os.access(self.path, os.R_OK)

    async def fetch_snapshot(self) -> List[LibraryTrack]:
        return await asyncio.to_thread(self._read)

    def _read(self) -> List[LibraryTrack]:
        try:
            with open(self.path, 'r', encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise LibraryUnavailableError(f"Could not read library snapshot at {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("tracks", [])
        if not isinstance(data, list):
            raise LibraryUnavailableError(f"Malformed library snapshot: expected a list of tracks, got {type(data).__name__}")

        tracks = []
        for i, row in enumerate(data):
            try:
                tracks.append(LibraryTrack.model_validate(row))
            except ValidationError as e:
                ident = row.get("id") if isinstance(row, dict) else None
                logger.warning(f"Skipping library row {i} (id={ident}): {e.error_count()} invalid fields")
                logger.debug(f"Validation errors for row {i}: {e}")

        logger.debug(f"Read {len(tracks)} of {len(data)} tracks from library snapshot")
        return tracks
