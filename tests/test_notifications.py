from types import SimpleNamespace

import pytest
import requests

from rentwatcher.diff import classify
from rentwatcher.distance import StationConfig, filter_by_distance
from rentwatcher.errors import ConfigError
from rentwatcher.models import DedupStatus, Listing, NotificationItem
from rentwatcher.notifications import (
    CompositeNotifier,
    DiscordNotifier,
    NotificationPolicy,
    SlackNotifier,
    build_notifier_from_env,
    format_notification,
    plan_notifications,
    send_error_notification,
    send_notifications,
)


class DummyResponse:

    def raise_for_status(self):
        pass


class RecordingNotifier:

    def __init__(self):
        self.messages = []

    def send(self, message, silent=False):
        self.messages.append(SimpleNamespace(message=message, silent=silent))


def make_listing(number, metro_value="350公尺", price="18,000"):
    return Listing(
        title=f"房源 {number}",
        link=f"https://rent.591.com.tw/{number}",
        price=price,
        house_type="獨立套房",
        rooms="1房1廳",
        metro_title="距信義安和站",
        metro_value=metro_value,
    )


def decide(listings, threshold=800):
    return filter_by_distance(listings, StationConfig(), threshold)


def test_discord_notifier_posts_silent_flag(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append(SimpleNamespace(url=url, json=json, timeout=timeout))
        return DummyResponse()

    monkeypatch.setattr("rentwatcher.notifications.requests.post", fake_post)

    notifier = DiscordNotifier(webhook_url="https://discord.com/api/webhooks/1/abc")
    notifier.send("loud")
    notifier.send("quiet", silent=True)

    assert calls[0].json == {"content": "loud"}
    assert calls[1].json == {"content": "quiet", "flags": 4096}
    assert calls[0].url == "https://discord.com/api/webhooks/1/abc"


def test_slack_notifier_posts(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append(SimpleNamespace(url=url, json=json, timeout=timeout))
        return DummyResponse()

    monkeypatch.setattr("rentwatcher.notifications.requests.post", fake_post)

    notifier = SlackNotifier(webhook_url="https://hooks.slack.com/services/test")
    notifier.send("hello slack")

    assert len(calls) == 1
    assert calls[0].url == "https://hooks.slack.com/services/test"
    assert calls[0].json == {"text": "hello slack"}


def test_composite_notifier_logs_and_continues(caplog):
    class Broken:
        def send(self, message, silent=False):
            raise RuntimeError("boom")

    working = RecordingNotifier()
    composite = CompositeNotifier(notifiers=[Broken(), working])

    with caplog.at_level("ERROR"):
        composite.send("hello", silent=True)

    assert [(m.message, m.silent) for m in working.messages] == [("hello", True)]
    assert "Failed to deliver notification via Broken" in caplog.text


def test_build_notifier_from_env(monkeypatch):
    monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("SLACK_WEBHOOK", raising=False)
    assert build_notifier_from_env() is None

    monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.com/api/webhooks/1/abc")
    monkeypatch.setenv("SLACK_WEBHOOK", "https://hooks.slack.com/services/test")
    notifier = build_notifier_from_env()

    assert isinstance(notifier, CompositeNotifier)
    assert [type(n) for n in notifier.notifiers] == [DiscordNotifier, SlackNotifier]


def test_filtered_mode_silences_far_and_unknown_listings():
    listings = [make_listing(1, "750公尺"), make_listing(2, "850公尺"), make_listing(3, "")]

    items = plan_notifications(decide(listings), classify(listings, {}), NotificationPolicy())

    assert [item.listing.primary_key for item in items] == ["1", "2", "3"]
    assert [item.silent for item in items] == [False, True, True]
    assert all(item.status is DedupStatus.NEW for item in items)


def test_filtered_mode_none_drops_far_listings():
    listings = [make_listing(1, "750公尺"), make_listing(2, "850公尺"), make_listing(3, "")]

    items = plan_notifications(decide(listings), None, NotificationPolicy(filtered_mode="none"))

    assert [item.listing.primary_key for item in items] == ["1"]


def test_all_mode_notifies_everything_loudly():
    listings = [make_listing(1, "750公尺"), make_listing(2, "850公尺")]

    items = plan_notifications(decide(listings), None, NotificationPolicy(notify_mode="all"))

    assert [item.silent for item in items] == [False, False]


def test_none_mode_notifies_nothing():
    items = plan_notifications(decide([make_listing(1)]), None, NotificationPolicy(notify_mode="none"))
    assert items == []


@pytest.mark.parametrize("changed_mode, expected", [("skip", []), ("silent", [True]), ("notify", [False])])
def test_changed_mode_controls_changed_listings(changed_mode, expected):
    before = make_listing(1, price="20,000")
    after = make_listing(1, price="18,000")
    dedup = classify([after], {"1": before.fingerprint})

    items = plan_notifications(decide([after]), dedup, NotificationPolicy(changed_mode=changed_mode))

    assert [item.silent for item in items] == expected


def test_invalid_policy_is_rejected():
    with pytest.raises(ConfigError):
        plan_notifications([], None, NotificationPolicy(notify_mode="loud"))


def test_format_notification_includes_distance_footer():
    near, far, unknown = decide([make_listing(1, "750公尺"), make_listing(2, "850公尺"), make_listing(3, "")])

    near_text = format_notification(NotificationItem(near.listing, near, DedupStatus.NEW), 1, 3)
    far_text = format_notification(NotificationItem(far.listing, far, DedupStatus.NEW, silent=True), 2, 3)
    unknown_text = format_notification(
        NotificationItem(unknown.listing, unknown, DedupStatus.NEW, silent=True),
        3,
        3,
        source_url="https://rent.591.com.tw/list?region=1",
    )

    assert "標題: 房源 1" in near_text
    assert "租金: 18,000 元/月" in near_text
    assert "步行約 10 分鐘" in near_text
    assert "URL: https://rent.591.com.tw/1" in near_text
    assert near_text.endswith("1/3 - 591房源通知")
    assert "(距離捷運>800m) 🔇" in far_text
    assert "(距離捷運未知) 🔇" in unknown_text
    assert unknown_text.endswith("• https://rent.591.com.tw/list?region=1")


def test_send_notifications_paces_and_counts_deliveries():
    listings = [make_listing(1), make_listing(2), make_listing(3)]
    items = plan_notifications(decide(listings), None, NotificationPolicy())
    notifier = RecordingNotifier()
    sleeps = []

    sent = send_notifications(items, notifier, delay=1.0, sleep=sleeps.append)

    assert sent == 3
    assert sleeps == [1.0, 1.0]
    assert "1/3" in notifier.messages[0].message


def test_send_notifications_continues_after_webhook_failure(caplog):
    items = plan_notifications(decide([make_listing(1), make_listing(2)]), None, NotificationPolicy())

    class FlakyNotifier:
        def __init__(self):
            self.messages = []

        def send(self, message, silent=False):
            if not self.messages and "1/2" in message:
                self.messages.append(None)
                raise requests.ConnectionError("webhook down")
            self.messages.append(message)

    notifier = FlakyNotifier()
    with caplog.at_level("ERROR"):
        sent = send_notifications(items, notifier, delay=0)

    assert sent == 1
    assert "Failed to send notification 1/2" in caplog.text


def test_send_error_notification_describes_failure():
    notifier = RecordingNotifier()

    send_error_notification(notifier, "https://rent.591.com.tw/list", RuntimeError("all stations failed"))

    message = notifier.messages[0].message
    assert "all stations failed" in message
    assert "https://rent.591.com.tw/list" in message
