"""
Prometheus metrics for the EMI ledger.

Tracks:
- Payment requests by outcome
- Payment processing duration
- Payment amounts
- Account lock wait time and lock-wait timeouts
- Accounts created
"""
from prometheus_client import Counter, Histogram

# Payment metrics
payment_requests_total = Counter(
    "emi_payment_requests_total",
    "Total number of payment requests",
    ["outcome"],  # committed, rejected, not_found, conflict, storage_error
)

payment_processing_duration_seconds = Histogram(
    "emi_payment_processing_duration_seconds",
    "Payment processing duration in seconds",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

payment_amount = Histogram(
    "emi_payment_amount",
    "Committed payment amounts",
    buckets=(100, 500, 1000, 2500, 5000, 10000, 25000, 50000, 100000),
)

# Lock metrics
account_lock_wait_seconds = Histogram(
    "emi_account_lock_wait_seconds",
    "Time spent waiting for an account's critical section",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0),
)

account_lock_timeouts_total = Counter(
    "emi_account_lock_timeouts_total",
    "Payments that gave up waiting for an account's critical section",
)

# Account metrics
accounts_created_total = Counter(
    "emi_accounts_created_total",
    "Total loan accounts created",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_outcome(outcome: str, duration_seconds: float) -> None:
        """Record a finished payment request."""
        payment_requests_total.labels(outcome=outcome).inc()
        payment_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_payment_amount(amount: float) -> None:
        """Record a committed payment amount."""
        payment_amount.observe(amount)

    @staticmethod
    def record_lock_wait(duration_seconds: float) -> None:
        """Record how long a payment waited for its account lock."""
        account_lock_wait_seconds.observe(duration_seconds)

    @staticmethod
    def record_lock_timeout() -> None:
        """Record a lock-wait timeout."""
        account_lock_timeouts_total.inc()

    @staticmethod
    def record_account_created() -> None:
        """Record a new account."""
        accounts_created_total.inc()


# Export singleton instance
metrics = MetricsCollector()
