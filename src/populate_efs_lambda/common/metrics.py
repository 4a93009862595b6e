"""CloudWatch metrics for the populate handlers.

Collected with AWS Lambda Powertools and written to the log in embedded
metric format on flush. Every metric carries the `service` and
`handler_name` dimensions.
"""

from datetime import datetime
from typing import Optional

from aws_lambda_powertools.metrics import Metrics, MetricUnit

from populate_efs_lambda.common.base import HandlerMixins

METRICS_NAMESPACE = "PopulateEFS"
METRICS_ATTR = "_metrics"


class HandlerMetrics(Metrics):
    def add_count_metric(self, name: str, value: float = 1):
        self.add_metric(name=name, unit=MetricUnit.Count, value=value)

    def add_outcome_metrics(self, prefix: str, succeeded: bool):
        """Emit both '{prefix}Success' and '{prefix}Failure' so each has a datapoint per call."""
        self.add_count_metric(f"{prefix}Success", int(succeeded))
        self.add_count_metric(f"{prefix}Failure", int(not succeeded))

    def add_duration_metric(self, prefix: str, start: datetime, end: Optional[datetime] = None):
        elapsed = (end or datetime.now(start.tzinfo)) - start
        self.add_metric(
            name=f"{prefix}Duration",
            unit=MetricUnit.Milliseconds,
            value=elapsed.total_seconds() * 1000,
        )

    def add_archive_metrics(self, size_bytes: int, entry_count: int):
        self.add_metric(name="ArchiveSize", unit=MetricUnit.Bytes, value=size_bytes)
        self.add_count_metric("ExtractedEntries", entry_count)


class MetricsMixins(HandlerMixins):
    """Gives a handler a metrics collector, created on first use."""

    @property
    def metrics(self) -> HandlerMetrics:
        metrics = getattr(self, METRICS_ATTR, None)
        if metrics is None:
            metrics = self.get_metrics(self.service_name(), handler_name=self.handler_name())
            self.metrics = metrics
        return metrics

    @metrics.setter
    def metrics(self, value: HandlerMetrics):
        setattr(self, METRICS_ATTR, value)

    @classmethod
    def get_metrics(
        cls,
        service: Optional[str] = None,
        namespace: str = METRICS_NAMESPACE,
        **dimensions: str,
    ) -> HandlerMetrics:
        metrics = HandlerMetrics(service=service, namespace=namespace)
        for name, value in dimensions.items():
            metrics.add_dimension(name=name, value=value)
        return metrics
