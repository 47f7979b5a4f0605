"""Monitoring - track orchestration latency, risk levels, interventions, stage failures, escalations."""

import logging, threading
from datetime import datetime, timezone
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from behavioral_engine.common.constants import MonitoringConstants

logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    ORCHESTRATION_LATENCY = "orchestration_latency"
    RISK_LEVEL = "risk_level"
    INTERVENTION_CREATED = "intervention_created"
    STAGE_FAILURE = "stage_failure"
    ESCALATION = "escalation"
    EVENTS_INGESTED = "events_ingested"


@dataclass
class MetricPoint:
    metric_name: str
    value: float
    unit: str = "None"
    timestamp: Optional[datetime] = None
    dimensions: Optional[Dict[str, str]] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)


class MetricsCollector:
    """Collects and publishes metrics to CloudWatch.

    Recording never raises: a failed auto-flush is logged and the batch
    is dropped.
    """

    DEFAULT_REGION = "us-east-1"
    DEFAULT_NAMESPACE = "BehavioralEngine"

    def __init__(self, namespace: Optional[str] = None, region: Optional[str] = None,
                 aws_profile: Optional[str] = None,
                 batch_size: int = MonitoringConstants.DEFAULT_BATCH_SIZE):
        self.namespace = namespace or self.DEFAULT_NAMESPACE
        self.region = region or self.DEFAULT_REGION
        self.batch_size = batch_size
        self.metric_buffer: List[MetricPoint] = []
        self._lock = threading.Lock()

        if aws_profile:
            session = boto3.Session(profile_name=aws_profile)
            self.cloudwatch = session.client("cloudwatch", region_name=self.region)
        else:
            self.cloudwatch = boto3.client("cloudwatch", region_name=self.region)

        logger.info(f"Initialized MetricsCollector: namespace={self.namespace}")

    def record_metric(self, metric: MetricPoint) -> None:
        """Buffer a metric point, flushing when the batch is full."""
        with self._lock:
            self.metric_buffer.append(metric)
            full = len(self.metric_buffer) >= self.batch_size

        if full:
            try:
                self.flush()
            except IOError as e:
                logger.error(f"Dropping metrics batch: {e}")

    def record_orchestration(
        self,
        latency_ms: float,
        risk_level: Optional[str],
        intervention_type: Optional[str] = None,
        escalated: bool = False,
    ) -> None:
        """Record metrics for one orchestrator run.

        Args:
            latency_ms: End-to-end run time
            risk_level: Level the risk stage produced, if it ran
            intervention_type: Type created in this run, if any
            escalated: Whether the run consumed an escalation
        """
        self.record_metric(MetricPoint(
            metric_name=MetricType.ORCHESTRATION_LATENCY.value,
            value=latency_ms,
            unit="Milliseconds",
        ))
        if latency_ms > MonitoringConstants.ORCHESTRATION_LATENCY_CRITICAL_MS:
            logger.warning(f"Orchestration latency critical: {latency_ms:.1f}ms")
        elif latency_ms > MonitoringConstants.ORCHESTRATION_LATENCY_WARNING_MS:
            logger.info(f"Orchestration latency high: {latency_ms:.1f}ms")

        if risk_level:
            self.record_metric(MetricPoint(
                metric_name=MetricType.RISK_LEVEL.value,
                value=1.0,
                unit="Count",
                dimensions={"level": risk_level},
            ))

        if intervention_type:
            self.record_metric(MetricPoint(
                metric_name=MetricType.INTERVENTION_CREATED.value,
                value=1.0,
                unit="Count",
                dimensions={"type": intervention_type},
            ))

        if escalated:
            self.record_metric(MetricPoint(
                metric_name=MetricType.ESCALATION.value,
                value=1.0,
                unit="Count",
            ))

    def record_stage_failure(self, stage: str, error_type: str) -> None:
        self.record_metric(MetricPoint(
            metric_name=MetricType.STAGE_FAILURE.value,
            value=1.0,
            unit="Count",
            dimensions={
                "stage": stage,
                "error_type": error_type,
            },
        ))

    def record_ingestion(self, accepted: int, rejected: int) -> None:
        self.record_metric(MetricPoint(
            metric_name=MetricType.EVENTS_INGESTED.value,
            value=float(accepted),
            unit="Count",
            dimensions={"outcome": "accepted"},
        ))
        if rejected:
            self.record_metric(MetricPoint(
                metric_name=MetricType.EVENTS_INGESTED.value,
                value=float(rejected),
                unit="Count",
                dimensions={"outcome": "rejected"},
            ))

    def flush(self) -> None:
        """Flush buffered metrics to CloudWatch.

        Raises:
            IOError: If CloudWatch write fails
        """
        with self._lock:
            pending = list(self.metric_buffer)
            self.metric_buffer.clear()

        if not pending:
            return

        metric_data = []
        for metric in pending:
            metric_dict = {
                "MetricName": metric.metric_name,
                "Value": metric.value,
                "Unit": metric.unit,
                "Timestamp": metric.timestamp,
            }

            if metric.dimensions:
                metric_dict["Dimensions"] = [
                    {"Name": k, "Value": str(v)}
                    for k, v in metric.dimensions.items()
                ]

            metric_data.append(metric_dict)

        try:
            # CloudWatch allows max 20 metrics per request
            for i in range(0, len(metric_data), 20):
                batch = metric_data[i:i+20]
                self.cloudwatch.put_metric_data(
                    Namespace=self.namespace,
                    MetricData=batch,
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to publish metrics: {e}")
            raise IOError(f"CloudWatch write failed: {e}") from e

        logger.debug(f"Published {len(pending)} metrics to CloudWatch")

    def shutdown(self) -> None:
        """Flush remaining metrics on shutdown."""
        try:
            self.flush()
        except IOError as e:
            logger.error(f"Metrics lost on shutdown: {e}")
