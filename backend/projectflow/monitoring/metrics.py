"""Prometheus metrics for the portal data store"""

from prometheus_client import Counter, Gauge, Histogram


# Realtime reconciliation metrics
realtime_events_total = Counter(
    'projectflow_realtime_events_total',
    'Total number of realtime change events handled by the data store',
    ['table', 'kind', 'outcome']
)

# Mutation metrics
store_mutations_total = Counter(
    'projectflow_store_mutations_total',
    'Total number of data store mutations',
    ['operation', 'status']
)

# Session metrics
profile_resolutions_total = Counter(
    'projectflow_profile_resolutions_total',
    'Total number of profile resolutions by outcome',
    ['outcome']
)

bulk_load_duration_seconds = Histogram(
    'projectflow_bulk_load_duration_seconds',
    'Time spent on the initial role-scoped bulk load',
    ['role', 'status'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Saga metrics
pending_cleanups = Gauge(
    'projectflow_pending_cleanups',
    'Partially failed multi-step operations awaiting manual cleanup',
)


class MetricsCollector:
    """Thin recorder over the module-level Prometheus collectors"""

    def record_event(self, table: str, kind: str, outcome: str):
        """Record a realtime event (outcome: applied, buffered, ignored, rejected)"""
        realtime_events_total.labels(table=table, kind=kind, outcome=outcome).inc()

    def record_mutation(self, operation: str, status: str):
        """Record a mutation outcome (status: success, failure)"""
        store_mutations_total.labels(operation=operation, status=status).inc()

    def record_profile_resolution(self, outcome: str):
        """Record a profile resolution (outcome: ready, failed, superseded)"""
        profile_resolutions_total.labels(outcome=outcome).inc()

    def record_bulk_load(self, role: str, status: str, duration_seconds: float):
        """Record the duration of a bulk load"""
        bulk_load_duration_seconds.labels(role=role, status=status).observe(duration_seconds)

    def set_pending_cleanups(self, count: int):
        """Expose the number of recorded pending cleanups"""
        pending_cleanups.set(count)


# Global metrics collector instance
metrics_collector = MetricsCollector()
