import os
import tempfile
import time
import unittest
from scrobsync.config import settings
from scrobsync.models import LibraryCacheEntry, ScrobbledTrack, SyncEvent, SyncTrigger
from scrobsync.pruner import CachePruner
from scrobsync.state import StateManager
from scrobsync.sync_log import SyncLog

DAY = 86400

def entry(track_id, synced_at, play_count=1):
    return LibraryCacheEntry(track_id=track_id, title="T", artist="A", play_count=play_count,
                             artwork="aGVsbG8=", last_synced_at=synced_at)

def scrobble(title, ts, artwork=None):
    return ScrobbledTrack(scrobble_id=ScrobbledTrack.generate_id("Artist", title, ts),
                          title=title, artist="Artist", timestamp=ts, artwork_url=artwork)

class StateTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "state.json")
        settings.PERSIST_ENABLED = True
        settings.CACHE_RETENTION_SECONDS = 30 * DAY
        settings.CACHE_PRUNE_INTERVAL_SECONDS = 6 * 3600
        settings.SYNC_LOG_MAX_ENTRIES = 50

    def tearDown(self):
        self.tmp.cleanup()

class TestStateManager(StateTestCase):
    def test_survives_restart(self):
        sm = StateManager(self.path)
        sm.commit_entries([entry("a", 10.0, play_count=4)])
        sm.upsert_history([scrobble("Song", 1700000000)])
        sm.save()

        reloaded = StateManager(self.path)
        self.assertEqual(reloaded.get_entry("a").play_count, 4)
        self.assertEqual(reloaded.get_entry("a").artwork, "aGVsbG8=")
        self.assertEqual(len(reloaded.recent_history()), 1)

    def test_corrupt_file_starts_fresh(self):
        with open(self.path, "w") as f:
            f.write("{not json")
        sm = StateManager(self.path)
        self.assertTrue(sm.is_library_empty())

    def test_persist_disabled_writes_nothing(self):
        settings.PERSIST_ENABLED = False
        sm = StateManager(self.path)
        sm.commit_entries([entry("a", 1.0)])
        sm.save()
        self.assertFalse(os.path.exists(self.path))

    def test_history_upsert_is_idempotent_and_updates_artwork(self):
        sm = StateManager(self.path)
        self.assertEqual(sm.upsert_history([scrobble("Song", 100), scrobble("Other", 200)]), (2, 0))
        self.assertEqual(sm.upsert_history([scrobble("Song", 100, artwork="http://img/large.png")]), (0, 1))
        history = sm.recent_history()
        self.assertEqual([t.title for t in history], ["Other", "Song"])
        self.assertEqual(history[1].artwork_url, "http://img/large.png")

    def test_history_keeps_entries_missing_from_remote_page(self):
        sm = StateManager(self.path)
        sm.upsert_history([scrobble("Old", 100)])
        sm.upsert_history([scrobble("New", 200)])
        self.assertEqual(len(sm.recent_history()), 2)

    def test_clear_operations(self):
        sm = StateManager(self.path)
        sm.commit_entries([entry("a", 1.0)])
        sm.upsert_history([scrobble("Song", 100)])
        sm.clear_library()
        self.assertTrue(sm.is_library_empty())
        self.assertEqual(len(sm.recent_history()), 1)
        sm.clear_history()
        self.assertEqual(sm.recent_history(), [])

class TestCachePruner(StateTestCase):
    def test_removes_only_entries_past_retention(self):
        now = time.time()
        sm = StateManager(self.path)
        sm.commit_entries([entry("old", now - 31 * DAY), entry("edge", now - 29 * DAY), entry("new", now)])
        pruner = CachePruner(sm)

        self.assertEqual(pruner.prune(now=now), 1)
        self.assertIsNone(sm.get_entry("old"))
        self.assertIsNotNone(sm.get_entry("edge"))
        self.assertIsNotNone(sm.get_entry("new"))

        # twice in a row changes nothing
        self.assertEqual(pruner.prune(now=now, force=True), 0)
        self.assertEqual(len(sm.state.library), 2)

    def test_runs_at_most_once_per_interval(self):
        now = time.time()
        sm = StateManager(self.path)
        pruner = CachePruner(sm)
        pruner.prune(now=now)
        sm.commit_entries([entry("old", now - 40 * DAY)])

        self.assertFalse(pruner.is_due(now + 60))
        self.assertEqual(pruner.prune(now=now + 60), 0)
        self.assertIsNotNone(sm.get_entry("old"))

        self.assertTrue(pruner.is_due(now + 6 * 3600))
        self.assertEqual(pruner.prune(now=now + 6 * 3600), 1)

class TestSyncLog(StateTestCase):
    def setUp(self):
        super().setUp()
        self.log = SyncLog(os.path.join(self.tmp.name, "sync_log.json"))

    def test_records_only_meaningful_entries(self):
        self.assertIsNone(self.log.record(SyncEvent.COMPLETED, scrobbles_count=0))
        self.assertIsNone(self.log.record(SyncEvent.SKIPPED_NO_NETWORK, trigger=SyncTrigger.BACKGROUND))
        self.log.record(SyncEvent.COMPLETED, scrobbles_count=2)
        self.log.record(SyncEvent.FAILED, message="boom", trigger=SyncTrigger.BACKGROUND)

        entries = self.log.entries()
        self.assertEqual([e.event for e in entries], [SyncEvent.FAILED, SyncEvent.COMPLETED])
        self.assertEqual(entries[0].trigger, SyncTrigger.BACKGROUND)
        self.assertEqual(self.log.last_entry().message, "boom")

    def test_capped_newest_first(self):
        log = SyncLog(os.path.join(self.tmp.name, "capped.json"), max_entries=3)
        for i in range(1, 6):
            log.record(SyncEvent.COMPLETED, scrobbles_count=i)
        self.assertEqual([e.scrobbles_count for e in log.entries()], [5, 4, 3])

    def test_clear(self):
        self.log.record(SyncEvent.COMPLETED, scrobbles_count=1)
        self.log.clear()
        self.assertEqual(self.log.entries(), [])
        self.assertIsNone(self.log.last_entry())

if __name__ == '__main__':
    unittest.main()
