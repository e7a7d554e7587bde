import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.stripe_webhook_events = None
            self.stripe_webhook_circuit_open = None
            self.webhook_events = None
            self.webhook_errors = None
            self.email_adapter_outcomes = None
            self.ledger_entries = None
            self.ledger_tokens = None
            self.tickets = None
            self.withdrawals = None
            self.rate_limit_blocks = None
            self.http_requests = None
            self.http_429 = None
            self.http_5xx = None
            self.http_latency = None
            self.circuit_state = None
            return

        self.webhook_events = Counter(
            "webhook_events_total",
            "Webhook events processed by result.",
            ["result"],
            registry=self.registry,
        )
        self.stripe_webhook_events = Counter(
            "stripe_webhook_events_total",
            "Stripe webhook outcomes by result.",
            ["outcome"],
            registry=self.registry,
        )
        self.webhook_errors = Counter(
            "webhook_errors_total",
            "Webhook errors by type (low cardinality).",
            ["type"],
            registry=self.registry,
        )
        self.stripe_webhook_circuit_open = Counter(
            "stripe_webhook_circuit_open_total",
            "Stripe webhook circuit breaker opened.",
            registry=self.registry,
        )
        self.email_adapter_outcomes = Counter(
            "email_adapter_outcomes_total",
            "Email adapter send outcomes.",
            ["status"],
            registry=self.registry,
        )
        self.ledger_entries = Counter(
            "ledger_entries_total",
            "Token ledger entries written by direction and reason.",
            ["direction", "reason"],
            registry=self.registry,
        )
        self.ledger_tokens = Counter(
            "ledger_tokens_total",
            "Tokens moved through the ledger by direction.",
            ["direction"],
            registry=self.registry,
        )
        self.tickets = Counter(
            "tickets_total",
            "Ticket lifecycle events.",
            ["action"],
            registry=self.registry,
        )
        self.withdrawals = Counter(
            "withdrawals_total",
            "Withdrawal lifecycle events.",
            ["action"],
            registry=self.registry,
        )
        self.rate_limit_blocks = Counter(
            "rate_limit_blocks_total",
            "Requests blocked by the rate limiter.",
            ["bucket"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, route and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.http_429 = Counter(
            "http_429_total",
            "HTTP 429 responses by bucket.",
            ["bucket"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency in seconds.",
            ["method", "path", "status_class"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
            registry=self.registry,
        )
        self.circuit_state = Gauge(
            "circuit_state",
            "Circuit breaker state (0=closed, 0.5=half-open, 1=open).",
            ["circuit"],
            registry=self.registry,
        )

    def record_webhook(self, result: str) -> None:
        if not self.enabled or self.webhook_events is None:
            return
        self.webhook_events.labels(result=result).inc()

    def record_stripe_webhook(self, outcome: str) -> None:
        if not self.enabled or self.stripe_webhook_events is None:
            return
        safe_outcome = outcome or "unknown"
        self.stripe_webhook_events.labels(outcome=safe_outcome).inc()

    def record_webhook_error(self, error_type: str) -> None:
        if not self.enabled or self.webhook_errors is None:
            return
        safe_type = error_type or "unknown"
        self.webhook_errors.labels(type=safe_type).inc()

    def record_stripe_circuit_open(self) -> None:
        if not self.enabled or self.stripe_webhook_circuit_open is None:
            return
        self.stripe_webhook_circuit_open.inc()

    def record_email_adapter(self, status: str) -> None:
        if not self.enabled or self.email_adapter_outcomes is None:
            return
        safe_status = status or "unknown"
        self.email_adapter_outcomes.labels(status=safe_status).inc()

    def record_ledger_entry(self, direction: str, reason: str, amount: int) -> None:
        if not self.enabled or self.ledger_entries is None or self.ledger_tokens is None:
            return
        self.ledger_entries.labels(direction=direction, reason=reason or "unknown").inc()
        if amount > 0:
            self.ledger_tokens.labels(direction=direction).inc(amount)

    def record_ticket(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.tickets is None:
            return
        if count <= 0:
            return
        self.tickets.labels(action=action).inc(count)

    def record_withdrawal(self, action: str) -> None:
        if not self.enabled or self.withdrawals is None:
            return
        self.withdrawals.labels(action=action).inc()

    def record_rate_limit_block(self, bucket: str) -> None:
        if not self.enabled or self.rate_limit_blocks is None:
            return
        self.rate_limit_blocks.labels(bucket=bucket or "other").inc()

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        self.http_requests.labels(method=method, path=path, status_class=status_class).inc()

    def record_http_429(self, bucket: str) -> None:
        if not self.enabled or self.http_429 is None:
            return
        self.http_429.labels(bucket=bucket or "other").inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_circuit_state(self, circuit: str, state: str) -> None:
        if not self.enabled or self.circuit_state is None:
            return
        value = {"closed": 0, "half_open": 0.5, "open": 1}.get(state, -1)
        self.circuit_state.labels(circuit=circuit).set(value)

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
