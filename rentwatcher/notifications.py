"""Notification policy and delivery of selected listings to chat webhooks."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol, Sequence

import requests

from .errors import ConfigError
from .models import DedupResult, DedupStatus, DistanceDecision, NotificationItem

logger = logging.getLogger(__name__)

DISCORD_SUPPRESS_NOTIFICATIONS = 4096
NOTIFY_MODES = ("all", "filtered", "none")
FILTERED_MODES = ("silent", "notify", "none")
CHANGED_MODES = ("notify", "silent", "skip")


class Notifier(Protocol):
    """Protocol defining the notifier contract."""

    def send(self, message: str, silent: bool = False) -> None:
        ...


@dataclass
class DiscordNotifier:
    """Send messages to a Discord channel webhook."""

    webhook_url: str
    timeout: int = 10

    def send(self, message: str, silent: bool = False) -> None:
        payload: Dict[str, object] = {"content": message}
        if silent:
            payload["flags"] = DISCORD_SUPPRESS_NOTIFICATIONS
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()


@dataclass
class SlackNotifier:
    """Send messages to Slack via Incoming Webhook."""

    webhook_url: str
    timeout: int = 10

    def send(self, message: str, silent: bool = False) -> None:
        # Incoming webhooks have no silent delivery; mark the text instead.
        payload = {"text": f"(silent) {message}" if silent else message}
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()


@dataclass
class CompositeNotifier:
    """Fan-out notifier that forwards messages to multiple channels."""

    notifiers: List[Notifier]

    def send(self, message: str, silent: bool = False) -> None:
        for notifier in self.notifiers:
            try:
                notifier.send(message, silent=silent)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to deliver notification via %s", type(notifier).__name__)


def build_notifier_from_env() -> CompositeNotifier | None:
    """Construct a notifier from environment configuration."""
    notifiers: list[Notifier] = []

    discord_webhook = (os.getenv("DISCORD_WEBHOOK_URL") or "").strip()
    if discord_webhook:
        notifiers.append(DiscordNotifier(webhook_url=discord_webhook))

    slack_webhook = (os.getenv("SLACK_WEBHOOK") or "").strip()
    if slack_webhook:
        notifiers.append(SlackNotifier(webhook_url=slack_webhook))

    if not notifiers:
        return None
    return CompositeNotifier(notifiers=notifiers)


@dataclass(frozen=True)
class NotificationPolicy:
    """Which candidates are delivered, and which of them silently.

    ``notify_mode``: ``all`` delivers every candidate, ``filtered`` applies
    the distance decision, ``none`` delivers nothing. ``filtered_mode`` says
    what happens to candidates that do not qualify by distance (including
    unknown distance): deliver ``silent``-ly, ``notify`` normally, or
    ``none``. ``changed_mode`` does the same for listings whose content
    changed since the previous crawl.
    """

    notify_mode: str = "filtered"
    filtered_mode: str = "silent"
    changed_mode: str = "skip"

    def validate(self) -> None:
        if self.notify_mode not in NOTIFY_MODES:
            raise ConfigError(f"notify_mode must be one of {NOTIFY_MODES}, got {self.notify_mode!r}")
        if self.filtered_mode not in FILTERED_MODES:
            raise ConfigError(
                f"filtered_mode must be one of {FILTERED_MODES}, got {self.filtered_mode!r}"
            )
        if self.changed_mode not in CHANGED_MODES:
            raise ConfigError(f"changed_mode must be one of {CHANGED_MODES}, got {self.changed_mode!r}")


def plan_notifications(
    decisions: Sequence[DistanceDecision],
    dedup: DedupResult | None,
    policy: NotificationPolicy,
) -> List[NotificationItem]:
    """Apply the notification policy to distance decisions, preserving order."""
    policy.validate()
    if policy.notify_mode == "none":
        return []

    statuses = {entry.primary_key: entry.status for entry in dedup.entries} if dedup else {}
    items: List[NotificationItem] = []
    for decision in decisions:
        status = statuses.get(decision.listing.primary_key)
        silent = False

        if status is DedupStatus.CHANGED:
            if policy.changed_mode == "skip":
                continue
            silent = policy.changed_mode == "silent"

        if policy.notify_mode == "filtered" and not decision.qualifies:
            if policy.filtered_mode == "none":
                continue
            silent = silent or policy.filtered_mode == "silent"

        items.append(
            NotificationItem(
                listing=decision.listing,
                decision=decision,
                status=status,
                silent=silent,
            )
        )

    logger.info(
        "Notification mode %s/%s: %d candidates, %d to deliver (%d silent)",
        policy.notify_mode,
        policy.filtered_mode,
        len(decisions),
        len(items),
        sum(1 for item in items if item.silent),
    )
    return items


def send_notifications(
    items: Sequence[NotificationItem],
    notifier: Notifier,
    source_url: str = "",
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Deliver each item as one message; returns the number delivered."""
    if not items:
        return 0

    logger.info("Sending %d notification(s)", len(items))
    sent = 0
    for index, item in enumerate(items, start=1):
        message = format_notification(item, index, len(items), source_url)
        try:
            notifier.send(message, silent=item.silent)
        except requests.RequestException:
            logger.exception("Failed to send notification %d/%d: %s", index, len(items), item.listing.title)
        else:
            sent += 1
            logger.info(
                "Sent notification %d/%d%s: %s",
                index,
                len(items),
                " (silent)" if item.silent else "",
                item.listing.title,
            )
        if index < len(items) and delay > 0:
            sleep(delay)
    return sent


def send_error_notification(notifier: Notifier, url: str, error: BaseException | str) -> None:
    message = "\n".join([
        ":warning: 591 爬蟲執行錯誤",
        f"錯誤訊息: {error}",
        f"目標URL: {url}",
    ])
    try:
        notifier.send(message)
    except requests.RequestException:
        logger.exception("Failed to deliver error notification for %s", url)


def format_notification(
    item: NotificationItem,
    index: int,
    total: int,
    source_url: str = "",
) -> str:
    """Render one listing into a chat message."""
    listing = item.listing
    header = ":pencil2: 物件資訊更新" if item.status is DedupStatus.CHANGED else ":new: 新物件"
    lines = [header, f"標題: {listing.title or '無標題'}"]
    if listing.price:
        lines.append(f"租金: {listing.price} 元/月")
    lines.append(f"房型: {listing.house_type or 'N/A'} / {listing.rooms or 'N/A'}")
    if listing.location:
        lines.append(f"地址: {listing.location}")
    metro = f"{listing.metro_title} {listing.metro_value}".strip()
    lines.append(f"捷運距離: {metro or 'N/A'}")
    if item.decision and item.decision.walking_minutes is not None:
        lines.append(f"步行約 {item.decision.walking_minutes} 分鐘")
    if listing.stations:
        lines.append(f"符合車站: {', '.join(listing.stations)}")
    if listing.tags:
        lines.append(f"標籤: {', '.join(listing.tags)}")
    if listing.link:
        lines.append(f"URL: {listing.link}")

    footer = f"{index}/{total} - 591房源通知"
    decision = item.decision
    if decision and not decision.qualifies:
        if decision.distance_meters is None:
            footer += " (距離捷運未知)"
        else:
            footer += f" (距離捷運>{decision.threshold_meters}m)"
    if item.silent:
        footer += " 🔇"
    if source_url:
        footer += f" • {source_url}"
    lines.append(footer)
    return "\n".join(lines)


__all__ = [
    "CompositeNotifier",
    "DiscordNotifier",
    "NotificationPolicy",
    "Notifier",
    "SlackNotifier",
    "build_notifier_from_env",
    "format_notification",
    "plan_notifications",
    "send_error_notification",
    "send_notifications",
]
