"""
Metrics Collection with Prometheus.

Exposes entitlement, metering and billing-event metrics for monitoring.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from proofai.config import settings


class EntitlementMetrics:
    """
    Centralized metrics for the entitlements service.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Entitlement resolutions (rate, degraded answers, test mode)
    - Recording admission decisions
    - Usage ledger appends and failures
    - Billing webhook outcomes
    - Admin grants
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "entitlements_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
                "environment": settings.environment,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "entitlements_http_requests_total",
            "Total HTTP requests",
            ["endpoint", "method", "status_code"],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlements_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["endpoint", "method"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "entitlements_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            ["endpoint", "method"],
        )

        # ====================================================================
        # Resolution Metrics
        # ====================================================================
        self.resolutions_total = Counter(
            "entitlements_resolutions_total",
            "Total entitlement resolutions",
            ["unlimited", "degraded", "provider"],
        )

        self.resolution_duration_seconds = Histogram(
            "entitlements_resolution_duration_seconds",
            "Entitlement resolution duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # ====================================================================
        # Admission Metrics
        # ====================================================================
        self.admissions_total = Counter(
            "entitlements_admissions_total",
            "Recording admission decisions",
            ["status", "funding"],
        )

        # ====================================================================
        # Usage Ledger Metrics
        # ====================================================================
        self.usage_records_total = Counter(
            "entitlements_usage_records_total",
            "Usage ledger appends",
            ["success"],
        )

        self.usage_minutes_recorded = Histogram(
            "entitlements_usage_minutes_recorded",
            "Minutes billed per usage record",
            buckets=(1, 2, 5, 10, 15, 30, 60, 120, 300),
        )

        self.credits_spent_total = Counter(
            "entitlements_credits_spent_total",
            "Credits explicitly spent",
        )

        # ====================================================================
        # Billing Event Metrics
        # ====================================================================
        self.billing_events_total = Counter(
            "entitlements_billing_events_total",
            "Billing events processed by outcome",
            ["event_type", "outcome"],
        )

        # ====================================================================
        # Admin Metrics
        # ====================================================================
        self.admin_actions_total = Counter(
            "entitlements_admin_actions_total",
            "Admin actions performed",
            ["action"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "entitlements_errors_total",
            "Total errors by type",
            ["error_type", "operation"],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_resolution(
        self, unlimited: bool, degraded: bool, provider: str, duration: float
    ) -> None:
        """Record an entitlement resolution."""
        self.resolutions_total.labels(
            unlimited=str(unlimited), degraded=str(degraded), provider=provider
        ).inc()
        self.resolution_duration_seconds.observe(duration)

    def record_admission(self, status: str, funding: str | None) -> None:
        """Record a recording admission decision."""
        self.admissions_total.labels(status=status, funding=funding or "none").inc()

    def record_usage(self, success: bool, minutes: int) -> None:
        """Record a usage ledger append."""
        self.usage_records_total.labels(success=str(success)).inc()
        if success:
            self.usage_minutes_recorded.observe(minutes)

    def record_billing_event(self, event_type: str, outcome: str) -> None:
        """Record a billing event outcome."""
        self.billing_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_admin_action(self, action: str) -> None:
        self.admin_actions_total.labels(action=action).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
