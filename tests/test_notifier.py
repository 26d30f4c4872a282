from unittest.mock import AsyncMock

import aiohttp
import pytest

from core.notifier import LogNotifier, NotificationKind, WebhookNotifier


def test_history_is_bounded():
    notifier = LogNotifier(max_history=3)
    for i in range(5):
        notifier.success("Purchase Successful!", f"order #{i}")
    assert [n.message for n in notifier.history] == ["order #2", "order #3", "order #4"]


def test_recent_serializes_kind():
    notifier = LogNotifier()
    notifier.error("Transaction failed", "Transaction timeout")
    (entry,) = notifier.recent()
    assert entry["kind"] == "error"
    assert entry["title"] == "Transaction failed"


def test_webhook_without_running_loop_only_records():
    notifier = WebhookNotifier("https://hooks.example/farm")
    notifier.success("Status Updated", "Order status has been updated successfully")
    assert notifier.history[0].kind == NotificationKind.SUCCESS


@pytest.mark.asyncio
async def test_webhook_posts_in_background():
    notifier = WebhookNotifier("https://hooks.example/farm")
    notifier._post = AsyncMock()
    notifier.error("Transaction rejected", "User rejected the request")
    await notifier.close()
    notifier._post.assert_awaited_once()
    assert notifier._post.await_args[0][0].title == "Transaction rejected"


@pytest.mark.asyncio
async def test_webhook_delivery_failure_is_logged_not_raised(caplog):
    notifier = WebhookNotifier("https://hooks.example/farm")

    async def unreachable():
        raise aiohttp.ClientConnectionError("connection refused")

    notifier._get_session = unreachable
    notifier.success("Certificate Minted!", "token #5")
    await notifier.close()
    assert "Webhook delivery failed" in caplog.text
