"""Tests for webhook notifications."""

import json
import logging

import httpx
import pytest
from pytest_httpx import HTTPXMock

from heimdizzy.config import NotificationEvents, NotificationSettings
from heimdizzy.notify import NotificationEvent, Notifier, build_embed

WEBHOOK = "https://discord.example.com/api/webhooks/1/abc"


def make_notifier(**kwargs) -> Notifier:  # type: ignore[no-untyped-def]
    settings = NotificationSettings(webhook=WEBHOOK, **kwargs)
    return Notifier(
        settings, service="email-service", product="messaging", environment="staging"
    )


def test_build_embed() -> None:
    """Test rendering detail fields."""
    embed = build_embed(
        NotificationEvent.BUILD_SUCCESS,
        "Build completed",
        product="messaging",
        service="email-service",
        environment="staging",
        details={"duration": 12400, "git_hash": "abc1234", "count": None},
        timestamp="2024-01-01T00:00:00+00:00",
    )
    assert embed["title"] == "Build Completed"
    assert embed["description"] == "Build completed"
    assert embed["timestamp"] == "2024-01-01T00:00:00+00:00"
    assert embed["fields"] == [
        {"name": "Product", "value": "messaging", "inline": True},
        {"name": "Service", "value": "email-service", "inline": True},
        {"name": "Environment", "value": "staging", "inline": True},
        {"name": "Git Hash", "value": "`abc1234`", "inline": True},
        {"name": "Duration", "value": "12s", "inline": True},
    ]


def test_build_embed_error() -> None:
    """Test errors are rendered as a code block."""
    embed = build_embed(
        NotificationEvent.DEPLOY_ERROR,
        "Failed",
        product="p",
        service="s",
        environment="production",
        details={"error": "Hook migrate failed: exit 1"},
    )
    assert embed["fields"][-1] == {
        "name": "Error",
        "value": "```Hook migrate failed: exit 1```",
        "inline": False,
    }


async def test_notify(httpx_mock: HTTPXMock) -> None:
    """Test a notification is posted as an embed."""
    httpx_mock.add_response(url=WEBHOOK, method="POST", status_code=204)
    await make_notifier().notify(
        NotificationEvent.DEPLOY_START, "Starting", git_hash="abc1234"
    )
    request = httpx_mock.get_request()
    assert request is not None
    payload = json.loads(request.content)
    (embed,) = payload["embeds"]
    assert embed["title"] == "Deployment Started"
    assert {"name": "Git Hash", "value": "`abc1234`", "inline": True} in embed[
        "fields"
    ]


async def test_event_disabled(httpx_mock: HTTPXMock) -> None:
    """Test a disabled event is not sent."""
    notifier = make_notifier(events=NotificationEvents(build_start=False))
    assert not notifier.enabled(NotificationEvent.BUILD_START)
    await notifier.notify(NotificationEvent.BUILD_START, "Building")
    assert not httpx_mock.get_requests()


async def test_notifications_disabled(httpx_mock: HTTPXMock) -> None:
    """Test nothing is sent without a webhook or when disabled."""
    await make_notifier(enabled=False).notify(NotificationEvent.DEPLOY_START, "x")
    notifier = Notifier(None, "s", "p", "staging")
    await notifier.notify(NotificationEvent.DEPLOY_START, "x")
    assert not httpx_mock.get_requests()


async def test_rate_limited(httpx_mock: HTTPXMock) -> None:
    """Test a rate limited notification waits and is dropped."""
    httpx_mock.add_response(
        url=WEBHOOK, status_code=429, headers={"X-RateLimit-Reset-After": "0.01"}
    )
    await make_notifier().notify(NotificationEvent.DEPLOY_SUCCESS, "Done")
    assert len(httpx_mock.get_requests()) == 1


async def test_server_error_is_not_fatal(
    httpx_mock: HTTPXMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a failed delivery is logged and not raised."""
    httpx_mock.add_response(url=WEBHOOK, status_code=500)
    with caplog.at_level(logging.WARNING):
        await make_notifier().notify(NotificationEvent.DEPLOY_ERROR, "Failed")
    assert "Webhook notification failed: 500" in caplog.text


async def test_transport_error_is_not_fatal(
    httpx_mock: HTTPXMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a connection failure is logged and not raised."""
    httpx_mock.add_exception(httpx.ConnectError("connection refused"))
    with caplog.at_level(logging.WARNING):
        await make_notifier().notify(NotificationEvent.DEPLOY_ERROR, "Failed")
    assert "connection refused" in caplog.text


class Sleeper:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.mark.parametrize(
    ("reset_after", "expected"),
    [
        ("1.5", 1.5),
        ("1e9", 60.0),
        ("inf", 2.0),
        ("nan", 2.0),
        ("-3", 2.0),
        ("soon", 2.0),
    ],
)
async def test_rate_limit_delay_is_bounded(
    httpx_mock: HTTPXMock, reset_after: str, expected: float
) -> None:
    """Test the wait requested by the webhook is finite and capped."""
    httpx_mock.add_response(
        url=WEBHOOK, status_code=429, headers={"X-RateLimit-Reset-After": reset_after}
    )
    sleeper = Sleeper()
    notifier = Notifier(
        NotificationSettings(webhook=WEBHOOK),
        service="email-service",
        product="messaging",
        environment="staging",
        sleep=sleeper,
    )
    await notifier.notify(NotificationEvent.DEPLOY_SUCCESS, "Done")
    assert sleeper.calls == [expected]
