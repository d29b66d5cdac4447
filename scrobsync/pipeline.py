import logging
from collections import OrderedDict
from typing import List, Set, Tuple
from .config import settings
from .models import CandidatePlay, DiffResult
from .state import StateManager

logger = logging.getLogger(__name__)

def build_batch(candidates: List[CandidatePlay], batch_size: int) -> Tuple[List[CandidatePlay], Set[str]]:
    """
    Picks the plays for one submission, keeping each track's plays together.
    Tracks are taken most recent first; a track that no longer fits waits for
    the next pass. Returns (batch, ids of tracks included in it).
    """
    groups: "OrderedDict[str, List[CandidatePlay]]" = OrderedDict()
    for play in candidates:
        groups.setdefault(play.track_id, []).append(play)
    ordered = sorted(groups.items(), key=lambda kv: max(p.timestamp for p in kv[1]), reverse=True)

    batch: List[CandidatePlay] = []
    included: Set[str] = set()
    for track_id, plays in ordered:
        if not batch and len(plays) > batch_size:
            logger.warning(f"Track {track_id} has {len(plays)} pending plays, only the {batch_size} most recent will be scrobbled")
            plays = sorted(plays, key=lambda p: p.timestamp, reverse=True)[:batch_size]
        if len(batch) + len(plays) > batch_size:
            continue
        batch.extend(plays)
        included.add(track_id)
    return batch, included

class SubmissionPipeline:
    def __init__(self, client, state_manager: StateManager):
        self.client = client
        self.sm = state_manager

    async def submit(self, diff: DiffResult) -> int:
        """
        Sends at most one batch and commits cache rows for the tracks in it.
        Returns the accepted count reported by Last.fm. Transport and API
        errors propagate after committing only rows no submission depends on.
        """
        involved = {c.track_id for c in diff.candidates}
        untouched = [e for tid, e in diff.updates.items() if tid not in involved]

        if not diff.candidates:
            self._commit(untouched)
            return 0

        batch, included = build_batch(diff.candidates, settings.SCROBBLE_BATCH_SIZE)
        deferred = involved - included
        if deferred:
            logger.info(f"{len(deferred)} tracks did not fit in this batch and will be retried next pass")

        logger.info(f"Scrobbling {len(batch)} plays from {len(included)} tracks")
        try:
            result = await self.client.scrobble(batch)
        except Exception:
            # Nothing for the attempted tracks is committed; they are re-detected next pass
            self._commit(untouched)
            raise

        logger.info(f"Last.fm accepted {result.accepted}, ignored {result.ignored}")
        self._commit(untouched + [diff.updates[tid] for tid in included if tid in diff.updates])
        return result.accepted

    def _commit(self, entries):
        if not entries:
            return
        count = self.sm.commit_entries(entries)
        self.sm.save()
        logger.debug(f"Committed {count} cache entries")
