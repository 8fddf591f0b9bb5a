"""Tests for evaluation and metric aggregation."""

import pytest
from flagsense.buckets import BucketArchive, EnvelopeIdentity, EnvelopeKind
from flagsense.telemetry import EvaluationAggregator, MetricAggregator, MetricRecord

INTERVAL = 300000
IDENTITY = EnvelopeIdentity(machine_id="machine-1", environment="PROD")


@pytest.fixture
def evaluations(clock):
    archive = BucketArchive(EnvelopeKind.EVALUATIONS)
    return EvaluationAggregator(archive, IDENTITY, INTERVAL, clock)


@pytest.fixture
def metrics(clock):
    archive = BucketArchive(EnvelopeKind.EVENTS)
    return MetricAggregator(archive, IDENTITY, INTERVAL, clock)


class TestMetricRecord:
    """Tests for MetricRecord."""

    def test_first_value(self):
        record = MetricRecord.first(5)
        assert record.to_dict() == {"count": 1, "total": 5, "minimum": 5, "maximum": 5}

    def test_add_updates_statistics(self):
        record = MetricRecord.first(5)
        record.add(2)
        record.add(9)
        assert record.to_dict() == {"count": 3, "total": 16, "minimum": 2, "maximum": 9}


class TestEvaluationAggregator:
    """Tests for EvaluationAggregator class."""

    def test_counts_equal_number_of_calls(self, evaluations):
        """Each record() adds one to its (flag, variant) counter."""
        for _ in range(3):
            evaluations.record("F", "A")
        for _ in range(2):
            evaluations.record("F", "B")
        evaluations.record("G", "A")

        assert evaluations.snapshot() == {"F": {"A": 3, "B": 2}, "G": {"A": 1}}

    def test_disabled_capture_is_noop(self, evaluations):
        """Disabled capture records nothing."""
        evaluations.enabled = False

        assert evaluations.record("F", "A") is False
        assert evaluations.is_empty()

    def test_lazy_rollover_on_next_write(self, evaluations, clock):
        """A write in a later bucket archives the previous bucket first."""
        start = evaluations.current_bucket
        evaluations.record("F", "A")

        clock.advance(INTERVAL)
        evaluations.record("F", "B")

        archived = evaluations._archive.get(start)
        assert archived.data == {"F": {"A": 1}}
        assert evaluations.current_bucket == start + INTERVAL
        assert evaluations.snapshot() == {"F": {"B": 1}}

    def test_rollover_is_idempotent(self, evaluations):
        """Rolling over twice without writes archives one envelope."""
        evaluations.record("F", "A")
        new_bucket = evaluations.current_bucket + INTERVAL

        first = evaluations.rollover(new_bucket)
        second = evaluations.rollover(new_bucket)

        assert first is not None
        assert second is None
        assert len(evaluations._archive) == 1

    def test_empty_bucket_not_archived(self, evaluations):
        """Rolling over an untouched bucket leaves the archive unchanged."""
        evaluations.rollover(evaluations.current_bucket + INTERVAL)

        assert len(evaluations._archive) == 0

    def test_rollover_while_disabled_discards_data(self, evaluations):
        """Data held when capture gets disabled is not archived."""
        evaluations.record("F", "A")
        evaluations.enabled = False

        evaluations.rollover(evaluations.current_bucket + INTERVAL)

        assert len(evaluations._archive) == 0
        assert evaluations.is_empty()

    def test_internal_errors_are_suppressed(self, evaluations, monkeypatch):
        """A failing write returns False and is counted, never raised."""

        def broken():
            raise RuntimeError("clock failure")

        monkeypatch.setattr(evaluations, "_clock", broken)

        assert evaluations.record("F", "A") is False
        assert evaluations.suppressed_errors == 1


class TestMetricAggregator:
    """Tests for MetricAggregator class."""

    def test_statistics_match_recorded_values(self, metrics):
        """count/total/minimum/maximum reflect every recorded value."""
        values = [4, 1.5, 10, 3]
        for value in values:
            assert metrics.record("F", "purchase", "A", value) is True

        stats = metrics.snapshot()["F"]["purchase"]["A"]
        assert stats["count"] == len(values)
        assert stats["total"] == pytest.approx(sum(values))
        assert stats["minimum"] == min(values)
        assert stats["maximum"] == max(values)

    def test_keys_are_independent(self, metrics):
        """Different events and variants keep separate records."""
        metrics.record("F", "purchase", "A", 1)
        metrics.record("F", "purchase", "B", 2)
        metrics.record("F", "click", "A", 3)

        snapshot = metrics.snapshot()
        assert snapshot["F"]["purchase"]["A"]["total"] == 1
        assert snapshot["F"]["purchase"]["B"]["total"] == 2
        assert snapshot["F"]["click"]["A"]["total"] == 3

    def test_non_numeric_value_is_suppressed(self, metrics):
        """Invalid values are rejected without raising."""
        assert metrics.record("F", "purchase", "A", "lots") is False
        assert metrics.record("F", "purchase", "A", True) is False
        assert metrics.suppressed_errors == 2
        assert metrics.is_empty()

    def test_archived_envelope_has_plain_dicts(self, metrics):
        """Archived metric data uses the upload shape."""
        metrics.record("F", "purchase", "A", 2)
        bucket = metrics.current_bucket

        metrics.rollover(bucket + INTERVAL)

        assert metrics._archive.get(bucket).data == {
            "F": {"purchase": {"A": {"count": 1, "total": 2, "minimum": 2, "maximum": 2}}}
        }
