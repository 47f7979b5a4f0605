"""Tests for the CloudWatch metrics collector."""

import logging
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from behavioral_engine.monitoring.metrics import MetricPoint, MetricsCollector, MetricType


@pytest.fixture
def cloudwatch():
    with patch("behavioral_engine.monitoring.metrics.boto3.client") as mock_client:
        mock_cloudwatch = MagicMock()
        mock_client.return_value = mock_cloudwatch
        yield mock_cloudwatch


def names(call):
    return [m["MetricName"] for m in call.kwargs["MetricData"]]


class TestMetricPoint:
    def test_timestamp_defaults_to_now(self):
        point = MetricPoint(metric_name="x", value=1.0)
        assert point.timestamp is not None
        assert point.timestamp.tzinfo is not None


class TestMetricsCollector:
    """Buffering and publishing."""

    @patch("behavioral_engine.monitoring.metrics.boto3.client")
    def test_initialization(self, mock_boto3_client):
        collector = MetricsCollector(namespace="Test", region="eu-west-1")

        assert collector.namespace == "Test"
        mock_boto3_client.assert_called_once_with("cloudwatch", region_name="eu-west-1")

    def test_orchestration_metrics(self, cloudwatch):
        """Latency, level, intervention and escalation in one run."""
        collector = MetricsCollector(batch_size=100)
        collector.record_orchestration(
            latency_ms=12.5, risk_level="high", intervention_type="medium_friction", escalated=True
        )
        collector.flush()

        call = cloudwatch.put_metric_data.call_args
        assert call.kwargs["Namespace"] == "BehavioralEngine"
        assert names(call) == [
            MetricType.ORCHESTRATION_LATENCY.value,
            MetricType.RISK_LEVEL.value,
            MetricType.INTERVENTION_CREATED.value,
            MetricType.ESCALATION.value,
        ]
        level = call.kwargs["MetricData"][1]
        assert level["Dimensions"] == [{"Name": "level", "Value": "high"}]

    def test_quiet_run_only_latency(self, cloudwatch):
        collector = MetricsCollector(batch_size=100)
        collector.record_orchestration(latency_ms=3.0, risk_level=None)

        assert len(collector.metric_buffer) == 1

    def test_stage_failure_dimensions(self, cloudwatch):
        collector = MetricsCollector(batch_size=100)
        collector.record_stage_failure("risk_agent", "RuntimeError")

        point = collector.metric_buffer[0]
        assert point.dimensions == {"stage": "risk_agent", "error_type": "RuntimeError"}

    def test_ingestion_counts(self, cloudwatch):
        """Rejected events are only reported when there are some."""
        collector = MetricsCollector(batch_size=100)
        collector.record_ingestion(accepted=3, rejected=0)
        assert len(collector.metric_buffer) == 1

        collector.record_ingestion(accepted=2, rejected=1)
        assert [m.dimensions["outcome"] for m in collector.metric_buffer] == [
            "accepted", "accepted", "rejected"
        ]

    def test_auto_flush_on_full_batch(self, cloudwatch):
        collector = MetricsCollector(batch_size=2)
        collector.record_stage_failure("risk_agent", "RuntimeError")
        cloudwatch.put_metric_data.assert_not_called()

        collector.record_stage_failure("risk_agent", "RuntimeError")
        cloudwatch.put_metric_data.assert_called_once()
        assert collector.metric_buffer == []

    def test_large_flush_is_batched(self, cloudwatch):
        """CloudWatch takes at most 20 points per call."""
        collector = MetricsCollector(batch_size=100)
        for _ in range(45):
            collector.record_stage_failure("risk_agent", "RuntimeError")
        collector.flush()

        assert cloudwatch.put_metric_data.call_count == 3

    def test_flush_failure_raises_ioerror(self, cloudwatch):
        cloudwatch.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "slow down"}}, "PutMetricData"
        )
        collector = MetricsCollector(batch_size=100)
        collector.record_stage_failure("risk_agent", "RuntimeError")

        with pytest.raises(IOError):
            collector.flush()

    def test_recording_never_raises(self, cloudwatch):
        """A failing auto-flush drops the batch."""
        cloudwatch.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "slow down"}}, "PutMetricData"
        )
        collector = MetricsCollector(batch_size=1)

        collector.record_stage_failure("risk_agent", "RuntimeError")
        assert collector.metric_buffer == []

    def test_shutdown_swallows_errors(self, cloudwatch):
        cloudwatch.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "slow down"}}, "PutMetricData"
        )
        collector = MetricsCollector(batch_size=100)
        collector.record_stage_failure("risk_agent", "RuntimeError")

        collector.shutdown()

    def test_empty_flush_is_noop(self, cloudwatch):
        MetricsCollector().flush()
        cloudwatch.put_metric_data.assert_not_called()

    @pytest.mark.parametrize("latency_ms, level, text", [
        (800.0, logging.INFO, "latency high"),
        (2500.0, logging.WARNING, "latency critical"),
    ])
    def test_slow_runs_are_logged(self, cloudwatch, caplog, latency_ms, level, text):
        collector = MetricsCollector(batch_size=100)
        caplog.clear()

        with caplog.at_level(logging.INFO, logger="behavioral_engine.monitoring.metrics"):
            collector.record_orchestration(latency_ms=latency_ms, risk_level=None)

        assert [(r.levelno, text in r.getMessage()) for r in caplog.records] == [(level, True)]

    def test_fast_run_not_logged(self, cloudwatch, caplog):
        collector = MetricsCollector(batch_size=100)
        caplog.clear()
        with caplog.at_level(logging.INFO, logger="behavioral_engine.monitoring.metrics"):
            collector.record_orchestration(latency_ms=20.0, risk_level=None)
        assert caplog.records == []
