"""Prometheus metrics for backup and restore jobs.

``JobMetrics.observe`` is registered as an orchestrator job listener; the
``/metrics`` route exposes the collected samples in the Prometheus text
format.
"""

from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from cfbackup.backup import JobEvent
from cfbackup.state import Phase

LABELS = ["operation", "service_type", "service_name"]


class JobMetrics:
    """Per-service job counters, durations and last success timestamps."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.jobs_total = Counter(
            "cfbackup_jobs_total",
            "Finished backup and restore jobs",
            LABELS + ["status"],
            registry=self.registry,
        )
        self.duration_seconds = Histogram(
            "cfbackup_job_duration_seconds",
            "Duration of finished jobs in seconds, from acceptance to completion",
            LABELS,
            registry=self.registry,
            buckets=(1, 10, 30, 60, 120, 300, 600, 1800, 3600, 7200),
        )
        self.last_success = Gauge(
            "cfbackup_last_success_timestamp",
            "Unix timestamp of the last successful job",
            LABELS,
            registry=self.registry,
        )

    def observe(self, event: JobEvent) -> None:
        state = event.state
        if not state.phase.terminal or state.kind is None:
            return

        labels = (state.kind.value, event.service.type, event.service.name)
        self.jobs_total.labels(*labels, state.phase.value).inc()

        if state.started_at and state.ended_at:
            self.duration_seconds.labels(*labels).observe((state.ended_at - state.started_at).total_seconds())
        if state.phase is Phase.SUCCEEDED and state.ended_at:
            self.last_success.labels(*labels).set(state.ended_at.timestamp())

    def render(self) -> bytes:
        return generate_latest(self.registry)


def create_metrics_route(metrics: JobMetrics) -> Route:
    async def export(request: Request) -> Response:
        return Response(metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return Route("/metrics", endpoint=export, methods=["GET"])
