"""Outbound notification delivery over signed webhooks.

The engine hands every notification to a :class:`Notifier` as
``{recipients, category, payload}`` and never waits on the outcome. The
webhook implementation posts to each subscribed endpoint with ``httpx``,
signing the body with HMAC-SHA256 when the subscription carries a secret.
Every attempt lands in the delivery history; failed ones are not retried.

Subscriptions and deliveries live in ``~/.modguard/webhooks/``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

from modguard.errors import ModerationError, ValidationError
from modguard.store.json_store import JsonCollection
from modguard.utils.timeutil import now_iso

logger = logging.getLogger(__name__)

NOTIFICATION_CATEGORIES = [
    "security_alert",
    "content_flagged",
    "user_suspended",
    "user_warned",
    "case_filed",
    "screenshot_attempt",
    "emergency",
]

SIGNATURE_HEADER = "X-Modguard-Signature"
CATEGORY_HEADER = "X-Modguard-Category"


class Notifier(Protocol):
    def notify(self, recipients: list[str], category: str, payload: dict[str, Any]) -> bool:
        """Return True only when at least one channel accepted the notification."""
        ...


class NullNotifier:
    """Drops every notification. Used when no delivery channel is configured."""

    def notify(self, recipients: list[str], category: str, payload: dict[str, Any]) -> bool:
        logger.debug("Notification dropped", extra={"category": category})
        return False


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


@dataclass
class Webhook:
    """An endpoint subscribed to one or more notification categories."""

    id: str
    url: str
    name: str = ""
    categories: list[str] = field(default_factory=list)
    secret: str = ""
    active: bool = True
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def wants(self, category: str) -> bool:
        return self.active and category in self.categories


@dataclass
class WebhookDelivery:
    id: str
    webhook_id: str
    category: str
    recipients: list[str] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)
    response_status: int = 0
    response_body: str = ""
    success: bool = False
    delivered_at: str = ""
    duration_ms: int = 0
    updated_at: str = ""
    version: int = 0


def sign_body(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookManager:
    """Webhook subscriptions plus the :class:`Notifier` that fans out to them."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        root = Path(base_dir) if base_dir else Path.home() / ".modguard" / "webhooks"
        root.mkdir(parents=True, exist_ok=True)
        self._hooks: JsonCollection[Webhook] = JsonCollection(root / "webhooks.json", Webhook, "Webhook")
        self._deliveries: JsonCollection[WebhookDelivery] = JsonCollection(
            root / "deliveries.json", WebhookDelivery, "WebhookDelivery"
        )
        self._client = client or httpx.Client(timeout=timeout)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def register_webhook(
        self,
        url: str,
        categories: list[str],
        secret: str = "",
        name: str = "",
    ) -> Webhook:
        if not categories:
            raise ValidationError("at least one notification category is required")
        unknown = sorted(set(categories) - set(NOTIFICATION_CATEGORIES))
        if unknown:
            raise ValidationError(f"unknown notification categories: {', '.join(unknown)}")
        if not url.startswith(("http://", "https://")):
            raise ValidationError("webhook url must be http(s)")

        hook = Webhook(
            id=uuid.uuid4().hex[:16],
            url=url,
            name=name or url,
            categories=list(dict.fromkeys(categories)),
            secret=secret,
            created_at=now_iso(),
        )
        self._hooks.insert(hook)
        logger.info("Webhook registered", extra={"webhook_id": hook.id, "categories": hook.categories})
        return hook

    def list_webhooks(self) -> list[Webhook]:
        return self._hooks.find()

    def toggle_webhook(self, webhook_id: str, active: bool) -> Webhook:
        def _set(hook: Webhook) -> None:
            hook.active = active

        return self._hooks.update(webhook_id, _set)

    def delete_webhook(self, webhook_id: str) -> bool:
        return self._hooks.delete(webhook_id)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def notify(self, recipients: list[str], category: str, payload: dict[str, Any]) -> bool:
        """POST the notification to every active subscriber of *category*.

        Returns True when at least one subscriber answered with a 2xx.
        """
        body = json.dumps(
            {"category": category, "recipients": recipients, "payload": payload}, default=str
        ).encode("utf-8")
        delivered = False
        for hook in self._hooks.find(lambda h: h.wants(category)):
            record = self._post(hook, body, recipients, category, payload)
            self._deliveries.insert(record)
            delivered = delivered or record.success
        return delivered

    def _post(
        self,
        hook: Webhook,
        body: bytes,
        recipients: list[str],
        category: str,
        payload: dict[str, Any],
    ) -> WebhookDelivery:
        headers = {"Content-Type": "application/json", CATEGORY_HEADER: category}
        if hook.secret:
            headers[SIGNATURE_HEADER] = sign_body(body, hook.secret)

        record = WebhookDelivery(
            id=uuid.uuid4().hex[:16],
            webhook_id=hook.id,
            category=category,
            recipients=list(recipients),
            payload=payload,
        )
        started = time.monotonic()
        try:
            resp = self._client.post(hook.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            record.response_body = str(exc)[:2000]
        else:
            record.response_status = resp.status_code
            record.response_body = resp.text[:2000]
            record.success = resp.is_success
        record.duration_ms = int((time.monotonic() - started) * 1000)
        record.delivered_at = now_iso()

        if not record.success:
            logger.warning(
                "Webhook delivery failed",
                extra={"webhook_id": hook.id, "category": category, "status": record.response_status},
            )
        return record

    def get_deliveries(self, webhook_id: Optional[str] = None, limit: int = 100) -> list[WebhookDelivery]:
        """Delivery records, newest first."""
        found = self._deliveries.find(lambda d: webhook_id is None or d.webhook_id == webhook_id)
        found.sort(key=lambda d: d.delivered_at, reverse=True)
        return found[:limit]


def deliver(notifier: Notifier, recipients: list[str], category: str, payload: dict[str, Any]) -> bool:
    """Hand a notification to *notifier* and report whether anyone received it.

    Failures are logged, never retried.
    """
    try:
        delivered = notifier.notify(recipients, category, payload)
    except (ModerationError, OSError) as exc:
        logger.warning(
            "Notification delivery failed",
            extra={"category": category, "error": str(exc)},
        )
        return False
    return bool(delivered)
