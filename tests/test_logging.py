"""
Tests for the logging module.
"""

from deal_sync.logging import (
    PipelineTimer,
    add_context_info,
    get_loan_code,
    get_partition_id,
    get_run_id,
    logging_context,
)


class TestLoggingContext:
    """Test logging context management."""

    def test_logging_context_sets_values(self):
        """Test that logging context sets values correctly."""
        with logging_context(run_id="run_123", partition_id="broker_1", loan_code="LOAN-001"):
            assert get_run_id() == "run_123"
            assert get_partition_id() == "broker_1"
            assert get_loan_code() == "LOAN-001"

    def test_logging_context_restores_values(self):
        """Test that context is restored after exiting."""
        with logging_context(partition_id="outer"):
            with logging_context(partition_id="inner"):
                assert get_partition_id() == "inner"
            assert get_partition_id() == "outer"

        assert get_partition_id() is None

    def test_context_processor(self):
        with logging_context(run_id="run_1", partition_id="broker_1"):
            event = add_context_info(None, "info", {"event": "x", "partition_id": "explicit"})

        assert event["run_id"] == "run_1"
        # Explicit fields win over context
        assert event["partition_id"] == "explicit"
        assert "loan_code" not in event


class TestPipelineTimer:
    """Test pipeline timing functionality."""

    def test_repeated_stages_accumulate(self):
        timer = PipelineTimer()
        timer.record("fetch", 10.0)

        with timer.stage("fetch"):
            pass

        assert timer.stages["fetch"] >= 10.0

    def test_summary(self):
        timer = PipelineTimer()
        timer.record("reconcile", 50.0)

        summary = timer.summary()

        assert summary["total_ms"] >= 0
        assert summary["stages"] == {"reconcile": 50.0}
