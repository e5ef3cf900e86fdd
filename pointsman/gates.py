"""
Pointsman Gates - Validation rules for inbound traffic.

G1: WebhookAuthenticity - Webhook body signed by the platform (base64 HMAC)
G2: AppProxySignature - Storefront request signed by the app proxy (hex HMAC)
G3: ReplayProtection - Webhook delivery cannot be processed twice (persistent via DB)
"""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction

logger = logging.getLogger(__name__)


class GateError(Exception):
    """Gate validation error."""

    def __init__(self, gate_name: str, message: str, details: dict | None = None):
        self.gate_name = gate_name
        self.message = message
        self.details = details or {}
        super().__init__(f"[{gate_name}] {message}")


@dataclass
class GateResult:
    """Result of a gate check."""

    passed: bool
    gate_name: str
    message: str = ""


# =============================================================================
# Gates
# =============================================================================


class Gates:
    """Pointsman validation gates."""

    # =========================================================================
    # G1: Webhook Authenticity
    # =========================================================================

    @classmethod
    def webhook_authenticity(cls, body: bytes, signature: str, secret: str) -> GateResult:
        """
        G1: Webhook is authentic.

        Shopify signs the raw body with the app secret:
        - Header: X-Shopify-Hmac-Sha256
        - Format: base64(HMAC-SHA256(secret, body))

        Args:
            body: Raw request body (bytes)
            signature: Signature from header
            secret: Webhook secret

        Raises:
            GateError: If the signature is missing or invalid
        """
        if not secret:
            # No secret configured = skip validation (dev mode)
            logger.warning(
                "G1_WebhookAuthenticity: webhook secret is empty - "
                "all payloads are accepted without signature validation. "
                "Set SHOPIFY_WEBHOOK_SECRET before deploying to production."
            )
            return GateResult(True, "G1_WebhookAuthenticity", "No secret configured (skipped)")

        if not signature:
            raise GateError("G1_WebhookAuthenticity", "Missing signature header.")

        expected = base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
        if not hmac.compare_digest(signature.strip(), expected):
            raise GateError("G1_WebhookAuthenticity", "Invalid signature.")

        return GateResult(True, "G1_WebhookAuthenticity")

    @classmethod
    def check_webhook_authenticity(cls, *args, **kwargs) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.webhook_authenticity(*args, **kwargs)
            return True
        except GateError:
            return False

    # =========================================================================
    # G2: App Proxy Signature
    # =========================================================================

    @classmethod
    def app_proxy_signature(cls, params: dict[str, list[str]], secret: str) -> GateResult:
        """
        G2: Storefront request came through the app proxy.

        The proxy appends a ``signature`` query parameter: hex
        HMAC-SHA256 over the other parameters sorted by key, each rendered
        as ``key=value`` (multiple values joined by commas), concatenated.

        Args:
            params: Query parameters as key -> list of values
            secret: App API secret

        Raises:
            GateError: If the signature is missing or invalid
        """
        if not secret:
            logger.warning(
                "G2_AppProxySignature: API secret is empty - "
                "storefront requests are accepted without signature validation."
            )
            return GateResult(True, "G2_AppProxySignature", "No secret configured (skipped)")

        signature = (params.get("signature") or [""])[0]
        if not signature:
            raise GateError("G2_AppProxySignature", "Missing signature parameter.")

        message = "".join(
            f"{key}={','.join(values)}"
            for key, values in sorted(params.items())
            if key != "signature"
        )
        expected = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(signature.lower(), expected):
            raise GateError("G2_AppProxySignature", "Invalid signature.")

        return GateResult(True, "G2_AppProxySignature")

    @classmethod
    def check_app_proxy_signature(cls, *args, **kwargs) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.app_proxy_signature(*args, **kwargs)
            return True
        except GateError:
            return False

    # =========================================================================
    # G3: Replay Protection (persistent via DB)
    # =========================================================================

    @classmethod
    def replay_protection(cls, nonce: str, provider: str = "shopify", topic: str = "") -> GateResult:
        """
        G3: Event cannot be processed twice (persistent via DB).

        Records the nonce in ProcessedEvent; the unique constraint makes
        this safe across workers.

        Args:
            nonce: Unique delivery identifier (X-Shopify-Webhook-Id)
            provider: Provider name for categorization
            topic: Webhook topic

        Raises:
            GateError: If the event was already recorded
        """
        from pointsman.models import ProcessedEvent

        if not nonce:
            raise GateError("G3_ReplayProtection", "Nonce is required.")

        try:
            with transaction.atomic():
                ProcessedEvent.objects.create(nonce=nonce, provider=provider, topic=topic)
        except IntegrityError:
            if ProcessedEvent.objects.filter(nonce=nonce).exists():
                raise GateError(
                    "G3_ReplayProtection",
                    "Replay detected: event already processed.",
                    {"nonce": nonce, "provider": provider},
                )
            raise

        return GateResult(True, "G3_ReplayProtection")

    @classmethod
    def check_replay_protection(cls, nonce: str, provider: str = "shopify", topic: str = "") -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.replay_protection(nonce, provider, topic)
            return True
        except GateError:
            return False

    @classmethod
    def is_replay(cls, nonce: str) -> bool:
        """Check if nonce was already processed (doesn't record)."""
        from pointsman.models import ProcessedEvent
        return ProcessedEvent.objects.filter(nonce=nonce).exists()
