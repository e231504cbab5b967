"""
Prometheus metrics for the Cura API.

All collectors live on one registry object so call sites read
``metrics.<name>.labels(...).inc()``.
"""
import time
from functools import wraps

from prometheus_client import Counter, Histogram


class MetricsRegistry:
    """Typed access to every application metric."""

    def __init__(self):
        self._setup_metrics()

    def _setup_metrics(self):
        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = Counter(
            'cura_http_requests_total',
            'Total HTTP requests',
            ['route', 'method', 'status']
        )

        self.http_request_duration_seconds = Histogram(
            'cura_http_request_duration_seconds',
            'HTTP request duration in seconds',
            ['route', 'method'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
        )

        self.exceptions_total = Counter(
            'cura_exceptions_total',
            'Domain and unexpected exceptions',
            ['exception_type', 'location']
        )

        self.engine_operation_duration_seconds = Histogram(
            'cura_engine_operation_duration_seconds',
            'Duration of engine operations',
            ['engine', 'operation'],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
        )

        # ===================================================================
        # Prescription Metrics
        # ===================================================================
        self.prescription_submissions_total = Counter(
            'cura_prescription_submissions_total',
            'Prescriptions submitted',
            ['urgency']
        )

        self.prescription_transitions_total = Counter(
            'cura_prescription_transitions_total',
            'Prescription status transitions',
            ['from_status', 'to_status', 'result']  # result: success|invalid|blocked
        )

        self.prescription_quality_gate_blocked_total = Counter(
            'cura_prescription_quality_gate_blocked_total',
            'Approvals blocked by the quality gate',
            ['check']
        )

        self.prescription_interaction_warnings_total = Counter(
            'cura_prescription_interaction_warnings_total',
            'Advisory drug interaction warnings raised',
            ['severity']
        )

        # ===================================================================
        # Suspended Order Metrics
        # ===================================================================
        self.suspended_orders_total = Counter(
            'cura_suspended_orders_total',
            'Orders suspended',
            ['issue_type']
        )

        self.suspended_order_modifications_total = Counter(
            'cura_suspended_order_modifications_total',
            'Suspended order modifications',
            ['result']
        )

        self.suspended_order_escalations_total = Counter(
            'cura_suspended_order_escalations_total',
            'Suspended order escalations',
            ['level']
        )

        self.suspended_order_resolutions_total = Counter(
            'cura_suspended_order_resolutions_total',
            'Suspended orders resolved or cancelled',
            ['action']
        )

        # ===================================================================
        # Settlement Metrics
        # ===================================================================
        self.settlement_transactions_total = Counter(
            'cura_settlement_transactions_total',
            'Ledger transactions appended',
            ['type', 'entity_type']
        )

        self.commission_collections_total = Counter(
            'cura_commission_collections_total',
            'Commission collection attempts',
            ['entity_type', 'result']  # result: collected|nothing_pending
        )

        self.refund_resolutions_total = Counter(
            'cura_refund_resolutions_total',
            'Refund requests resolved',
            ['action']
        )

        self.payout_schedule_runs_total = Counter(
            'cura_payout_schedule_runs_total',
            'Payout/collection schedule runs',
            ['schedule_type', 'result']
        )

    def track_duration(self, engine, operation):
        """
        Decorator recording the wrapped call in the engine duration histogram.

        Usage:
            @metrics.track_duration('settlement', 'collect_commission')
            def collect_commission(self, ...):
                ...
        """
        histogram = self.engine_operation_duration_seconds.labels(engine=engine, operation=operation)

        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    histogram.observe(time.time() - start_time)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
