"""Alert router: severity-based delivery of notifications to Telegram and a webhook."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import aiohttp

from ..collaborators import Notification, Severity
from ..config import NotifyConfig

logger = logging.getLogger("linkwatch.notify")

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"


def _is_report(notification: Notification) -> bool:
    return str(notification.details.get("rule_id", "")).endswith("_report")


class AlertRouter:
    """NotificationSink that routes by severity.

    critical: Telegram admin chat, Telegram chat and webhook, never rate limited.
    error: Telegram chat and webhook. warning: webhook only.
    info: collected and flushed to the webhook as one summary after the batch window,
    except scheduled reports, which go to the webhook directly.
    """

    def __init__(self, config: NotifyConfig, clock: Callable[[], float] = time.time) -> None:
        self._config = config
        self._clock = clock
        self._rate_cache: dict[tuple[str, str], float] = {}
        self._batch: list[Notification] = []
        self._batch_task: asyncio.Task[None] | None = None
        if not config.telegram_bot_token:
            logger.warning("Telegram bot token not set, Telegram delivery disabled")
        if not config.webhook_url:
            logger.warning("Alert webhook URL not set, webhook delivery disabled")

    async def send(self, notification: Notification) -> None:
        await self.route(notification)

    # --- Rate limiting ---

    def _is_rate_limited(self, notification: Notification) -> bool:
        key = (notification.source, notification.title)
        last = self._rate_cache.get(key)
        now = self._clock()
        if last is not None and now - last < self._config.rate_limit_s:
            return True
        self._rate_cache[key] = now
        return False

    # --- Routing ---

    async def route(self, notification: Notification) -> None:
        logger.info(
            "Alert [%s] %s: %s - %s",
            notification.severity.value, notification.source, notification.title, notification.message,
        )

        if notification.severity is Severity.CRITICAL:
            if self._config.telegram_admin_chat_id:
                await self._send_telegram(notification, self._config.telegram_admin_chat_id)
            await self._send_telegram(notification, self._config.telegram_chat_id)
            await self._send_webhook(notification)
            return

        if self._is_rate_limited(notification):
            logger.info("Rate-limited: %s/%s", notification.source, notification.title)
            return

        if notification.severity is Severity.INFO and not _is_report(notification):
            self._batch.append(notification)
            self._ensure_batch_task()
            return

        if notification.severity in (Severity.INFO, Severity.WARNING):
            await self._send_webhook(notification)
            return

        await self._send_telegram(notification, self._config.telegram_chat_id)
        await self._send_webhook(notification)

    # --- Batching ---

    def _ensure_batch_task(self) -> None:
        if self._batch_task is None or self._batch_task.done():
            self._batch_task = asyncio.create_task(self._flush_batch_loop())

    async def _flush_batch_loop(self) -> None:
        await asyncio.sleep(self._config.batch_window_s)
        await self.flush_batch()

    async def flush_batch(self) -> None:
        if not self._batch:
            return
        batch = self._batch[:]
        self._batch.clear()
        summary = f"Batched notifications ({len(batch)}):\n"
        for n in batch:
            summary += f"- [{n.severity.value.upper()}] {n.source}: {n.title}\n"
        logger.info(summary)
        await self._send_webhook(
            Notification(
                severity=Severity.INFO,
                title=f"Batch summary ({len(batch)} notifications)",
                message=summary,
                details={"notifications": [
                    {"id": n.id, "title": n.title, "message": n.message, "details": n.details} for n in batch
                ]},
                source=self._config.source,
            )
        )

    async def close(self) -> None:
        """Cancel the pending batch timer and deliver whatever is queued."""
        if self._batch_task is not None and not self._batch_task.done():
            self._batch_task.cancel()
            try:
                await self._batch_task
            except asyncio.CancelledError:
                pass
        self._batch_task = None
        await self.flush_batch()

    # --- Telegram ---

    async def _send_telegram(self, notification: Notification, chat_id: str) -> None:
        if not self._config.telegram_bot_token or not chat_id:
            logger.warning("Telegram not configured, dropping %s for Telegram", notification.title)
            return
        if notification.severity is Severity.CRITICAL:
            text = f"CRITICAL - [{notification.source}] {notification.title}\n{notification.message}"
        else:
            text = f"[{notification.source}] {notification.title}\n{notification.message}"
        url = TELEGRAM_API.format(token=self._config.telegram_bot_token)
        try:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                await session.post(url, json={"chat_id": chat_id, "text": text})
        except Exception:
            logger.exception("Failed to send Telegram alert to %s", chat_id)

    # --- Webhook ---

    async def _send_webhook(self, notification: Notification) -> None:
        if not self._config.webhook_url:
            logger.warning("Webhook not configured, dropping %s for webhook", notification.title)
            return
        payload = {
            "id": notification.id,
            "source": notification.source,
            "level": notification.severity.value,
            "title": notification.title,
            "message": notification.message,
            "details": notification.details,
            "ts": notification.ts,
        }
        headers = {"Authorization": f"Bearer {self._config.webhook_token}"} if self._config.webhook_token else {}
        try:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                await session.post(self._config.webhook_url, json=payload, headers=headers)
        except Exception:
            logger.exception("Failed to send webhook alert")
