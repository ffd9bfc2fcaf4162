"""
Tests for scanfleet.models.

Covers: Severity parsing and ordering, ScanJob identity, WorkerNode and
ResultRecord serialization, ScanState progress / completion / snapshot.
"""

import json
import unittest
import uuid

from scanfleet.models import (
    FeedEvent,
    FeedEventType,
    JobStatus,
    NodeStatus,
    ResultRecord,
    ScanJob,
    ScanState,
    Severity,
    WorkerNode,
)


class TestSeverity(unittest.TestCase):

    def test_parse_known(self):
        self.assertEqual(Severity.parse("HIGH"), Severity.HIGH)
        self.assertEqual(Severity.parse(" critical "), Severity.CRITICAL)

    def test_parse_unknown_is_info(self):
        self.assertEqual(Severity.parse("unknown"), Severity.INFO)
        self.assertEqual(Severity.parse(None), Severity.INFO)
        self.assertEqual(Severity.parse(""), Severity.INFO)

    def test_parse_passthrough(self):
        self.assertIs(Severity.parse(Severity.LOW), Severity.LOW)

    def test_ordering(self):
        self.assertGreater(Severity.CRITICAL, Severity.HIGH)
        self.assertGreater(Severity.MEDIUM, Severity.LOW)
        self.assertLess(Severity.INFO, Severity.LOW)
        self.assertEqual(max([Severity.LOW, Severity.CRITICAL, Severity.INFO]),
                         Severity.CRITICAL)


class TestScanJob(unittest.TestCase):

    def test_items_stored_as_tuple(self):
        job = ScanJob(items=["a", "b"], node_count=2)
        self.assertEqual(job.items, ("a", "b"))

    def test_with_id_assigns_uuid(self):
        job = ScanJob(items=["a"]).with_id()
        uuid.UUID(job.job_id)

    def test_with_id_keeps_existing(self):
        job = ScanJob(items=["a"], job_id="fixed")
        self.assertIs(job.with_id(), job)


class TestWorkerNode(unittest.TestCase):

    def test_to_dict(self):
        node = WorkerNode(node_id="abcd1234-worker-0", address="192.0.2.5",
                          total_items=10, status=NodeStatus.RUNNING)
        d = node.to_dict()
        self.assertEqual(d["id"], "abcd1234-worker-0")
        self.assertEqual(d["address"], "192.0.2.5")
        self.assertEqual(d["status"], "running")
        self.assertEqual(d["total_items"], 10)
        json.dumps(d)

    def test_heartbeat_message_exposed(self):
        node = WorkerNode(node_id="n", last_message="scanning host 3/10")
        self.assertEqual(node.to_dict()["message"], "scanning host 3/10")

    def test_handle_not_exposed(self):
        node = WorkerNode(node_id="n", handle="secret-id")
        self.assertNotIn("handle", node.to_dict())


class TestResultRecord:

    def test_to_dict_columns(self):
        r = ResultRecord(target="example.com", rule="tech-detect",
                         severity=Severity.LOW, match="https://example.com",
                         source_node="n0")
        d = r.to_dict()
        assert list(d) == ["target", "rule", "severity", "match",
                           "timestamp", "source_node"]
        assert d["severity"] == "low"

    def test_default_severity(self):
        assert ResultRecord(target="t", rule="r").severity is Severity.INFO


class TestScanState(unittest.TestCase):

    def setUp(self):
        self.state = ScanState(job_id="job-1", total_items=20)

    def _node(self, name, progress=0.0):
        return WorkerNode(node_id=name, progress=progress, total_items=10,
                          status=NodeStatus.RUNNING)

    def test_initial(self):
        self.assertEqual(self.state.status, JobStatus.STARTING)
        self.assertEqual(self.state.progress, 0.0)
        self.assertFalse(self.state.all_nodes_complete)

    def test_register_moves_to_running(self):
        self.state.register_node(self._node("a"))
        self.assertEqual(self.state.status, JobStatus.RUNNING)

    def test_progress_is_unweighted_mean(self):
        self.state.register_node(self._node("a", 20.0))
        self.state.register_node(self._node("b", 60.0))
        self.assertAlmostEqual(self.state.recompute_progress(), 40.0)

    def test_progress_zero_without_nodes(self):
        self.state.progress = 55.0
        self.assertEqual(self.state.recompute_progress(), 0.0)

    def test_all_nodes_complete(self):
        self.state.register_node(self._node("a", 100.0))
        self.state.register_node(self._node("b", 99.9))
        self.assertFalse(self.state.all_nodes_complete)
        self.state.find_node("b").progress = 100.0
        self.assertTrue(self.state.all_nodes_complete)

    def test_add_result_increments_scanned(self):
        self.state.add_result(ResultRecord(target="t", rule="r"))
        self.state.add_result(ResultRecord(target="t", rule="r2",
                                           severity=Severity.HIGH))
        self.assertEqual(self.state.scanned_items, 2)
        counts = self.state.severity_counts()
        self.assertEqual(counts["info"], 1)
        self.assertEqual(counts["high"], 1)
        self.assertEqual(counts["critical"], 0)

    def test_find_node_missing(self):
        self.assertIsNone(self.state.find_node("nope"))

    def test_snapshot_is_detached(self):
        self.state.register_node(self._node("a", 10.0))
        snap = self.state.snapshot()
        self.state.find_node("a").progress = 90.0
        self.state.nodes.append(self._node("b"))
        self.assertEqual(snap.nodes[0].progress, 10.0)
        self.assertEqual(len(snap.nodes), 1)

    def test_to_dict_is_json_serializable(self):
        self.state.register_node(self._node("a", 33.333))
        self.state.add_result(ResultRecord(target="t", rule="r"))
        d = self.state.to_dict()
        self.assertEqual(d["id"], "job-1")
        self.assertEqual(d["progress"], 33.33)
        self.assertEqual(d["status"], "running")
        self.assertEqual(len(d["results"]), 1)
        json.dumps(d)


class TestFeedEvent(unittest.TestCase):

    def test_to_dict(self):
        ev = FeedEvent(FeedEventType.JOB_COMPLETE, {"id": "x"})
        self.assertEqual(ev.to_dict(), {"type": "job_complete",
                                        "payload": {"id": "x"}})
