"""Sends pipeline lifecycle notifications to a webhook.

Notifications are best effort. A delivery problem is logged and never
propagates to the pipeline. When the webhook reports a rate limit the notifier
waits for the indicated delay and then drops the notification.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import datetime
from enum import StrEnum
import logging
import math
from typing import Any

import httpx

from .config import NotificationSettings
from .exceptions import TransientNotifyError

__all__ = ["Notifier", "NotificationEvent", "build_embed"]

_LOGGER = logging.getLogger(__name__)

RATE_LIMIT_HEADER = "X-RateLimit-Reset-After"
FOOTER = "Heimdizzy Deployment Tool"
REQUEST_TIMEOUT = 10.0
MAX_RATE_LIMIT_DELAY = 60.0
"""Upper bound in seconds on a wait requested by the webhook."""


class NotificationEvent(StrEnum):
    """Checkpoints at which a notification is emitted."""

    DEPLOY_START = "deployStart"
    DEPLOY_SUCCESS = "deploySuccess"
    DEPLOY_ERROR = "deployError"
    BUILD_START = "buildStart"
    BUILD_SUCCESS = "buildSuccess"
    BUILD_SKIPPED = "buildSkipped"
    UPLOAD_START = "uploadStart"
    UPLOAD_SUCCESS = "uploadSuccess"
    UPLOAD_SKIPPED = "uploadSkipped"
    PODS_RESTARTING = "podsRestarting"
    PODS_READY = "podsReady"
    WEB_DEPLOYING = "webDeploying"
    WEB_DEPLOYED = "webDeployed"
    CLEANUP = "cleanup"
    DRY_RUN = "dryRun"


@dataclass(frozen=True)
class _Style:
    color: int
    title: str


_STYLES: dict[NotificationEvent, _Style] = {
    NotificationEvent.DEPLOY_START: _Style(0x3498DB, "Deployment Started"),
    NotificationEvent.DEPLOY_SUCCESS: _Style(0x2ECC71, "Deployment Completed"),
    NotificationEvent.DEPLOY_ERROR: _Style(0xE74C3C, "Deployment Failed"),
    NotificationEvent.BUILD_START: _Style(0x9B59B6, "Build Started"),
    NotificationEvent.BUILD_SUCCESS: _Style(0x2ECC71, "Build Completed"),
    NotificationEvent.BUILD_SKIPPED: _Style(0xF39C12, "Build Skipped"),
    NotificationEvent.UPLOAD_START: _Style(0x3498DB, "Upload Started"),
    NotificationEvent.UPLOAD_SUCCESS: _Style(0x2ECC71, "Upload Completed"),
    NotificationEvent.UPLOAD_SKIPPED: _Style(0xF39C12, "Upload Skipped"),
    NotificationEvent.PODS_RESTARTING: _Style(0x3498DB, "Restarting Pods"),
    NotificationEvent.PODS_READY: _Style(0x2ECC71, "Pods Ready"),
    NotificationEvent.WEB_DEPLOYING: _Style(0x3498DB, "Deploying Web Assets"),
    NotificationEvent.WEB_DEPLOYED: _Style(0x2ECC71, "Web Assets Deployed"),
    NotificationEvent.CLEANUP: _Style(0x95A5A6, "Cleanup Completed"),
    NotificationEvent.DRY_RUN: _Style(0xE67E22, "Dry Run Mode"),
}

# Detail key, field name, inline. Durations are milliseconds.
_DETAIL_FIELDS: list[tuple[str, str, bool]] = [
    ("git_hash", "Git Hash", True),
    ("duration", "Duration", True),
    ("size", "Size", True),
    ("artifact_path", "Artifact", False),
    ("count", "Pod Count", True),
    ("pod_status", "Pod Status", False),
    ("files_deployed", "Files Deployed", True),
    ("invalidation_id", "CloudFront Invalidation", True),
    ("build_time", "Build Time", True),
    ("deploy_time", "Deploy Time", True),
]
_CODE_FIELDS = {"git_hash", "artifact_path", "invalidation_id"}
_DURATION_FIELDS = {"duration", "build_time", "deploy_time"}


def _field(name: str, value: str, inline: bool) -> dict[str, Any]:
    return {"name": name, "value": value, "inline": inline}


def build_embed(
    event: NotificationEvent,
    message: str,
    product: str,
    service: str,
    environment: str,
    details: dict[str, Any],
    timestamp: str | None = None,
) -> dict[str, Any]:
    """Render a notification as a Discord style embed."""
    style = _STYLES[event]
    fields = [
        _field("Product", product, True),
        _field("Service", service, True),
        _field("Environment", environment, True),
    ]
    for key, name, inline in _DETAIL_FIELDS:
        if (value := details.get(key)) is None or value == "":
            continue
        if key in _DURATION_FIELDS:
            text = f"{round(value / 1000)}s"
        elif key in _CODE_FIELDS:
            text = f"`{value}`"
        else:
            text = str(value)
        fields.append(_field(name, text, inline))
    if error := details.get("error"):
        fields.append(_field("Error", f"```{str(error)[:1000]}```", False))

    return {
        "title": style.title,
        "description": message,
        "color": style.color,
        "fields": fields,
        "timestamp": timestamp
        or datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "footer": {"text": FOOTER},
    }


class Notifier:
    """Emits notifications for one service and environment."""

    def __init__(
        self,
        settings: NotificationSettings | None,
        service: str,
        product: str,
        environment: str,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize Notifier."""
        self._settings = settings
        self._service = service
        self._product = product
        self._environment = environment
        self._client = client
        self._sleep = sleep

    @property
    def webhook(self) -> str | None:
        """The configured webhook, or None when notifications are disabled."""
        if self._settings is None or not self._settings.enabled:
            return None
        return self._settings.webhook or None

    def enabled(self, event: NotificationEvent) -> bool:
        """Return True if a notification would be sent for the event."""
        if self.webhook is None or self._settings is None:
            return False
        return self._settings.events.is_enabled(event.value)

    async def notify(
        self, event: NotificationEvent, message: str, **details: Any
    ) -> None:
        """Send a notification, logging rather than raising on failure."""
        if not self.enabled(event):
            return
        try:
            await self._post(event, message, details)
        except TransientNotifyError as err:
            _LOGGER.warning("%s", err)

    async def _post(
        self, event: NotificationEvent, message: str, details: dict[str, Any]
    ) -> None:
        assert self.webhook is not None and self._settings is not None
        embed = build_embed(
            event,
            message,
            product=self._product,
            service=self._service,
            environment=self._environment,
            details=details,
        )
        payload = {"embeds": [embed]}
        try:
            if self._client is not None:
                response = await self._client.post(self.webhook, json=payload)
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    response = await client.post(self.webhook, json=payload)
        except httpx.HTTPError as err:
            raise TransientNotifyError(
                f"Failed to send webhook notification: {err}"
            ) from err

        if response.status_code == 429:
            delay = self._rate_limit_delay(response)
            _LOGGER.warning(
                "Webhook rate limit hit. Waiting %.1fs before continuing", delay
            )
            await self._sleep(delay)
            return
        if response.is_error:
            raise TransientNotifyError(
                f"Webhook notification failed: {response.status_code}"
            )

    def _rate_limit_delay(self, response: httpx.Response) -> float:
        """Seconds to wait after a rate limited response."""
        assert self._settings is not None
        default = min(self._settings.rate_limit_delay / 1000, MAX_RATE_LIMIT_DELAY)
        if retry_after := response.headers.get(RATE_LIMIT_HEADER):
            try:
                delay = float(retry_after)
            except ValueError:
                delay = math.nan
            if math.isfinite(delay) and delay >= 0:
                return min(delay, MAX_RATE_LIMIT_DELAY)
            _LOGGER.debug(
                "Ignoring invalid %s header: %s", RATE_LIMIT_HEADER, retry_after
            )
        return max(default, 0.0)
