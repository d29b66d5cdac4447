import logging
import time
from typing import Dict, List, Optional
from .config import settings
from .models import LibraryTrack, LibraryCacheEntry, CandidatePlay, DiffResult

logger = logging.getLogger(__name__)

def estimate_play_times(last_played: float, delta: int, duration: Optional[float] = None) -> List[float]:
    """
    Timestamps for `delta` plays ending at `last_played`, most recent first,
    spaced back by one track length. Back-to-back replays and replays with
    gaps look the same from a play count, so this is an approximation.
    """
    if delta <= 0:
        return []
    if not duration or duration <= 0:
        duration = settings.DEFAULT_TRACK_DURATION_SECONDS
    return [last_played - i * duration for i in range(delta)]

class SyncEngine:
    """Compares a fresh library snapshot against the Snapshot Cache."""

    def detect(self, tracks: List[LibraryTrack], cache: Dict[str, LibraryCacheEntry],
               now: Optional[float] = None) -> DiffResult:
        """
        Returns the Candidate Plays for this pass together with the cache rows
        that reflect the new library state. Nothing is written here; the
        submission pipeline decides which rows get committed.
        """
        now = now if now is not None else time.time()
        first_sync = not cache
        result = DiffResult(first_sync=first_sync)
        if first_sync:
            logger.info(f"First sync: recording baseline for {len(tracks)} tracks")

        for track in tracks:
            cached = cache.get(track.id)
            update = LibraryCacheEntry.from_track(track, synced_at=now)
            if cached is not None and not update.duration:
                update.duration = cached.duration
            result.updates[track.id] = update

            if cached is None:
                if first_sync or not self._within_lookback(track, now):
                    continue
                logger.info(f"New track played: {track.artist} - {track.title}")
                result.candidates.append(self._candidate(track, track.last_played))
                continue

            delta = track.play_count - cached.play_count
            if delta < 0:
                # keep the high-water mark so a restored count is not replayed
                logger.debug(f"Play count fell for {track.id} ({cached.play_count} -> {track.play_count})")
                update.play_count = cached.play_count
                continue
            if delta == 0:
                continue
            if track.last_played is None:
                logger.debug(f"Play count rose for {track.id} without a last played date, skipping")
                continue

            logger.info(f"Change detected for {track.artist} - {track.title}: play count {cached.play_count} -> {track.play_count}")
            duration = track.duration or cached.duration
            for ts in estimate_play_times(track.last_played, delta, duration):
                result.candidates.append(self._candidate(track, ts))

        return result

    @staticmethod
    def _within_lookback(track: LibraryTrack, now: float) -> bool:
        if track.play_count < 1 or track.last_played is None:
            return False
        return now - track.last_played <= settings.SCROBBLE_LOOKBACK_SECONDS

    @staticmethod
    def _candidate(track: LibraryTrack, timestamp: float) -> CandidatePlay:
        return CandidatePlay(
            track_id=track.id,
            title=track.title,
            artist=track.artist,
            album=track.album,
            timestamp=timestamp
        )
