"""Tests for the RecordComparator class."""

from datetime import datetime, timedelta, timezone

from tasksync.records import TaskRecord
from tasksync.sync.comparator import MergeAction, MergeDecision, RecordComparator

T0 = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


def _record(record_id: str, minutes: int = 0, title: str = "x") -> TaskRecord:
    return TaskRecord(
        id=record_id, updated_at=T0 + timedelta(minutes=minutes), data={"title": title}
    )


class TestCompareExistingRecords:
    """Tests for records present on both sides."""

    def test_pending_with_different_timestamp_conflicts(self):
        comparator = RecordComparator()
        local = _record("a", 1, "local")
        remote = _record("a", 2, "remote")

        decisions = comparator.compare_records([], {"a": local}, [remote])

        assert len(decisions) == 1
        assert decisions[0].action == MergeAction.CONFLICT
        assert decisions[0].local_record is local
        assert decisions[0].remote_record is remote

    def test_pending_with_same_timestamp_skips(self):
        comparator = RecordComparator()
        local = _record("a", 1)
        remote = _record("a", 1)

        decisions = comparator.compare_records([], {"a": local}, [remote])

        assert decisions[0].action == MergeAction.SKIP
        assert decisions[0].result is remote

    def test_identical_unchanged_records_skip(self):
        comparator = RecordComparator({"a"})
        decisions = comparator.compare_records([_record("a")], {}, [_record("a")])

        assert decisions[0].action == MergeAction.SKIP
        assert decisions[0].reason == "Records are identical"

    def test_unchanged_local_takes_remote(self):
        comparator = RecordComparator({"a"})
        remote = _record("a", 3, "newer")

        decisions = comparator.compare_records([_record("a")], {}, [remote])

        assert decisions[0].action == MergeAction.TAKE_REMOTE
        assert decisions[0].result is remote

    def test_pending_overrides_local_list(self):
        comparator = RecordComparator({"a"})
        stale = _record("a", 0, "stale")
        pending = _record("a", 5, "pending")

        decisions = comparator.compare_records([stale], {"a": pending}, [])

        assert decisions[0].action == MergeAction.KEEP_LOCAL
        assert decisions[0].result is pending


class TestHandleLocalOnly:
    """Tests for records that only exist locally."""

    def test_pending_new_record_kept(self):
        comparator = RecordComparator()
        record = _record("a")

        decision = comparator._handle_local_only("a", record, True)

        assert decision.action == MergeAction.KEEP_LOCAL
        assert decision.reason == "New or changed local record"

    def test_previously_synced_record_deleted(self):
        comparator = RecordComparator({"a"})

        decision = comparator._handle_local_only("a", _record("a"), False)

        assert decision.action == MergeAction.DELETE_LOCAL
        assert decision.result is None

    def test_pending_edit_survives_remote_delete(self):
        comparator = RecordComparator({"a"})

        decision = comparator._handle_local_only("a", _record("a", 1), True)

        assert decision.action == MergeAction.KEEP_LOCAL

    def test_never_synced_record_kept(self):
        comparator = RecordComparator()

        decision = comparator._handle_local_only("a", _record("a"), False)

        assert decision.action == MergeAction.KEEP_LOCAL
        assert decision.reason == "Local record never synced"


class TestHandleRemoteOnly:
    """Tests for records that only exist remotely."""

    def test_new_remote_record_taken(self):
        comparator = RecordComparator()
        remote = _record("a")

        decision = comparator._handle_remote_only("a", remote)

        assert decision.action == MergeAction.TAKE_REMOTE
        assert decision.result is remote

    def test_locally_deleted_record_removed(self):
        comparator = RecordComparator({"a"})

        decision = comparator._handle_remote_only("a", _record("a"))

        assert decision.action == MergeAction.DELETE_REMOTE
        assert decision.result is None


class TestCompareRecords:
    """Tests for ordering and duplicate handling."""

    def test_remote_order_then_local_only(self):
        comparator = RecordComparator()
        local = [_record("l1"), _record("shared"), _record("l2")]
        remote = [_record("r1"), _record("shared")]

        decisions = comparator.compare_records(local, {}, remote)

        assert [d.record_id for d in decisions] == ["r1", "shared", "l1", "l2"]

    def test_pending_only_records_follow_local_records(self):
        comparator = RecordComparator()
        decisions = comparator.compare_records(
            [_record("l1")], {"p1": _record("p1")}, []
        )
        assert [d.record_id for d in decisions] == ["l1", "p1"]

    def test_duplicate_remote_ids_first_wins(self):
        comparator = RecordComparator()
        first = _record("a", 0, "first")
        second = _record("a", 1, "second")

        decisions = comparator.compare_records([], {}, [first, second])

        assert len(decisions) == 1
        assert decisions[0].remote_record is first

    def test_empty_inputs(self):
        assert RecordComparator().compare_records([], {}, []) == []


class TestMergeDecisionResult:
    """Tests for MergeDecision.result."""

    def test_conflict_has_no_result(self):
        decision = MergeDecision(
            action=MergeAction.CONFLICT,
            reason="both",
            local_record=_record("a"),
            remote_record=_record("a", 1),
            record_id="a",
        )
        assert decision.result is None
