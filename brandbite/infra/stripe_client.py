from __future__ import annotations

import inspect
from typing import Any, Callable

import anyio

from brandbite.infra.stripe_resilience import stripe_circuit
from brandbite.settings import settings


MUTATING_METHOD_PREFIXES: tuple[str, ...] = (
    "create_",
    "cancel_",
    "update_",
)

READ_ONLY_METHOD_PREFIXES: tuple[str, ...] = (
    "retrieve_",
    "list_",
    "verify_",
)


def is_mutating_method(method_name: str) -> bool:
    if method_name.startswith(READ_ONLY_METHOD_PREFIXES):
        return False
    return method_name.startswith(MUTATING_METHOD_PREFIXES)


class StripeClient:
    def __init__(
        self,
        *,
        secret_key: str | None,
        webhook_secret: str | None,
        stripe_sdk: Any | None = None,
    ) -> None:
        """Wrap the Stripe SDK behind the shared ``stripe`` circuit breaker.

        ``None`` credentials fall back to global settings. Operations raise
        ``ValueError`` when the credential they need is still missing.
        """
        if stripe_sdk is None:
            import stripe as stripe_sdk  # type: ignore

        self.stripe = stripe_sdk
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret

    def _stripe_request_timeout(self) -> float:
        timeout = stripe_circuit.timeout_seconds
        if timeout is None:
            return 10.0
        return max(0.01, timeout)

    async def _call(self, fn: Callable[..., Any], /, *args, **kwargs) -> Any:
        request_kwargs = dict(kwargs)
        try:
            signature = inspect.signature(fn)
            supports_timeout = any(
                parameter.kind == inspect.Parameter.VAR_KEYWORD or name == "timeout"
                for name, parameter in signature.parameters.items()
            )
        except (TypeError, ValueError):
            supports_timeout = True
        if supports_timeout:
            request_kwargs.setdefault("timeout", self._stripe_request_timeout())

        def _sync_call() -> Any:
            return fn(*args, **request_kwargs)

        return await stripe_circuit.call(lambda: anyio.to_thread.run_sync(_sync_call))

    async def create_subscription_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
        customer: str | None = None,
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        if not self.secret_key:
            raise ValueError("Stripe secret key not configured")

        self.stripe.api_key = self.secret_key
        payload: dict[str, Any] = {
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": metadata or {},
            # Renewal invoices carry the subscription metadata, not the session's.
            "subscription_data": {"metadata": metadata or {}},
        }
        if customer:
            payload["customer"] = customer
        elif customer_email:
            payload["customer_email"] = customer_email
        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        return await self._call(self.stripe.checkout.Session.create, **payload, **extra)

    async def verify_webhook(self, payload: bytes, signature: str | None) -> Any:
        if not self.webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        if not signature:
            raise ValueError("Missing Stripe signature header")
        return await self._call(
            self.stripe.Webhook.construct_event,
            payload=payload,
            sig_header=signature,
            secret=self.webhook_secret,
        )


def resolve_client(app_state: Any) -> Any:
    """Return the Stripe client for the running app.

    A client placed directly on ``app.state.stripe_client`` wins over the one
    built in ``AppServices`` so tests can swap in a fake. When neither exists a
    client is built from global settings and cached on the state.
    """
    state = getattr(app_state, "state", app_state)
    client = getattr(state, "stripe_client", None)
    if client is not None:
        return client
    services = getattr(state, "services", None)
    if services is not None and getattr(services, "stripe_client", None) is not None:
        return services.stripe_client
    client = StripeClient(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
    state.stripe_client = client
    return client


async def call_stripe_client_method(client: Any, method_name: str, /, *args, **kwargs) -> Any:
    method = getattr(client, method_name, None)
    if method is None:
        raise AttributeError(f"Stripe client missing method {method_name}")

    if is_mutating_method(method_name) and not kwargs.get("idempotency_key"):
        raise ValueError(
            f"Stripe mutation '{method_name}' requires idempotency_key to be provided"
        )

    result = method(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result
