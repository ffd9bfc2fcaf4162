"""
Tests for scanfleet.status_store.

Covers: create / get / remove lifecycle, detached snapshots, per-job
locking under concurrent mutation, and the optional redis mirror.
"""

import json
import threading
import unittest
from unittest.mock import MagicMock

import pytest

from scanfleet.errors import NotFoundError, ValidationError
from scanfleet.models import NodeStatus, ResultRecord, WorkerNode
from scanfleet.status_store import REDIS_JOBS_KEY, StatusStore


class TestStatusStoreLifecycle(unittest.TestCase):

    def setUp(self):
        self.store = StatusStore()

    def test_create_and_get(self):
        self.store.create("job-1", total_items=12)
        state = self.store.get("job-1")
        self.assertEqual(state.job_id, "job-1")
        self.assertEqual(state.total_items, 12)
        self.assertTrue(self.store.exists("job-1"))
        self.assertEqual(len(self.store), 1)

    def test_duplicate_create_rejected(self):
        self.store.create("job-1")
        with self.assertRaises(ValidationError):
            self.store.create("job-1")

    def test_get_unknown_raises(self):
        with self.assertRaises(NotFoundError) as ctx:
            self.store.get("missing")
        self.assertEqual(ctx.exception.job_id, "missing")

    def test_remove_returns_final_state(self):
        self.store.create("job-1", total_items=3)
        final = self.store.remove("job-1")
        self.assertEqual(final.total_items, 3)
        self.assertFalse(self.store.exists("job-1"))

    def test_remove_absent_is_noop(self):
        self.assertIsNone(self.store.remove("missing"))

    def test_job_ids(self):
        self.store.create("a")
        self.store.create("b")
        self.assertEqual(sorted(self.store.job_ids()), ["a", "b"])

    def test_get_returns_snapshot(self):
        self.store.create("job-1")
        snap = self.store.get("job-1")
        snap.progress = 77.0
        self.assertEqual(self.store.get("job-1").progress, 0.0)

    def test_locked_mutation_visible(self):
        self.store.create("job-1")
        with self.store.locked("job-1") as state:
            state.register_node(WorkerNode(node_id="n0",
                                           status=NodeStatus.RUNNING))
        self.assertEqual(len(self.store.get("job-1").nodes), 1)

    def test_locked_unknown_raises(self):
        with self.assertRaises(NotFoundError):
            with self.store.locked("missing"):
                pass

    def test_locked_is_reentrant(self):
        self.store.create("job-1")
        with self.store.locked("job-1") as outer:
            with self.store.locked("job-1") as inner:
                self.assertIs(outer, inner)


class TestStatusStoreConcurrency:

    def test_concurrent_progress_updates_not_lost(self):
        store = StatusStore()
        store.create("job-1")
        nodes = [f"n{i}" for i in range(8)]
        with store.locked("job-1") as state:
            for name in nodes:
                state.register_node(WorkerNode(node_id=name, total_items=100))

        def worker(name):
            for p in range(1, 101):
                with store.locked("job-1") as state:
                    state.find_node(name).progress = float(p)
                    state.recompute_progress()

        threads = [threading.Thread(target=worker, args=(n,)) for n in nodes]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        final = store.get("job-1")
        assert all(n.progress == 100.0 for n in final.nodes)
        assert final.progress == 100.0

    def test_concurrent_counter_increments(self):
        store = StatusStore()
        store.create("job-1")

        def bump():
            for _ in range(500):
                with store.locked("job-1") as state:
                    state.scanned_items += 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        assert store.get("job-1").scanned_items == 2000

    def test_locked_after_remove_raises(self):
        store = StatusStore()
        store.create("job-1")
        store.remove("job-1")
        with pytest.raises(NotFoundError):
            with store.locked("job-1"):
                pass


class TestStatusStoreRedisMirror(unittest.TestCase):

    def setUp(self):
        self.redis = MagicMock()
        self.store = StatusStore(redis_client=self.redis)

    def test_create_mirrors_snapshot(self):
        self.store.create("job-1", total_items=4)
        key, field, value = self.redis.hset.call_args[0]
        self.assertEqual(key, REDIS_JOBS_KEY)
        self.assertEqual(field, "job-1")
        self.assertEqual(json.loads(value)["total_items"], 4)

    def test_mutation_mirrors(self):
        self.store.create("job-1")
        self.redis.hset.reset_mock()
        with self.store.locked("job-1") as state:
            state.scanned_items = 9
        value = self.redis.hset.call_args[0][2]
        self.assertEqual(json.loads(value)["scanned_items"], 9)

    def test_mirror_omits_results(self):
        self.store.create("job-1")
        with self.store.locked("job-1") as state:
            for i in range(3):
                state.add_result(ResultRecord(target=f"h{i}", rule="r"))
        value = json.loads(self.redis.hset.call_args[0][2])
        self.assertNotIn("results", value)
        self.assertEqual(value["result_count"], 3)
        self.assertEqual(value["scanned_items"], 3)

    def test_mirror_written_after_lock_released(self):
        self.store.create("job-1")
        blocked = []

        def hset(*args):
            reader = threading.Thread(target=self.store.get, args=("job-1",))
            reader.start()
            reader.join(1)
            blocked.append(reader.is_alive())

        self.redis.hset.side_effect = hset
        with self.store.locked("job-1") as state:
            state.scanned_items = 1
        self.assertEqual(blocked, [False])

    def test_no_mirror_write_after_remove(self):
        self.store.create("job-1")
        entry = self.store._entry("job-1")
        with entry.lock:
            pending = self.store._mirror_payload(entry)
        self.store.remove("job-1")
        self.redis.hset.reset_mock()
        self.store._persist(entry, pending)
        self.redis.hset.assert_not_called()

    def test_remove_deletes_mirror(self):
        self.store.create("job-1")
        self.store.remove("job-1")
        self.redis.hdel.assert_called_once_with(REDIS_JOBS_KEY, "job-1")

    def test_mirror_errors_are_swallowed(self):
        self.redis.hset.side_effect = ConnectionError("down")
        self.store.create("job-1")
        with self.store.locked("job-1") as state:
            state.scanned_items = 1
        self.assertEqual(self.store.get("job-1").scanned_items, 1)
