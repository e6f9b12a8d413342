from __future__ import annotations

import asyncio
import datetime as dt
import logging

import pytest

from ttpwatch.bus import LatestValueBus
from ttpwatch.consumers import EMAIL_SUBJECT, SCHEDULER_LINK, EmailConsumer, LogConsumer, format_slot_email
from ttpwatch.domain import ErrorEvent, Location, NoEvent, Slot, SlotAvailableEvent
from ttpwatch.email_notifier import EmailSendError

BOSTON = Location(id=1, name="Boston")


def _slot_event(day: int = 1) -> SlotAvailableEvent:
    start = dt.datetime(2024, 2, day, 9, 0)
    return SlotAvailableEvent(
        location=BOSTON,
        slot=Slot(location_id=1, start_timestamp=start, end_timestamp=start + dt.timedelta(minutes=30)),
    )


class _RecordingSender:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict[str, str]] = []

    async def send_html(self, *, to_email: str, subject: str, html: str) -> None:
        self.sent.append({"to_email": to_email, "subject": subject, "html": html})
        if self.fail:
            raise EmailSendError("HTTP 500")


async def _drain(bus: LatestValueBus, task: asyncio.Task[None]) -> None:
    # Let the consumer observe the last value, then stop it.
    for _ in range(5):
        await asyncio.sleep(0)
    bus.close()
    await asyncio.wait_for(task, timeout=1)


def test_format_slot_email_mentions_location_time_and_link() -> None:
    html = format_slot_email(_slot_event())

    assert "Boston" in html
    assert "2024-02-01 09:00" in html
    assert SCHEDULER_LINK in html


@pytest.mark.asyncio
async def test_log_consumer_logs_each_event_kind(caplog: pytest.LogCaptureFixture) -> None:
    bus = LatestValueBus()
    task = asyncio.create_task(LogConsumer(bus.subscribe()).run())
    caplog.set_level(logging.DEBUG, logger="ttpwatch.consumers")

    for event in (_slot_event(), ErrorEvent("HTTP 503"), NoEvent()):
        bus.publish(event)
        for _ in range(3):
            await asyncio.sleep(0)

    await _drain(bus, task)

    messages = [r.getMessage() for r in caplog.records if r.name == "ttpwatch.consumers"]
    assert "Boston has an open slot at 2024-02-01 09:00" in messages
    assert "Error HTTP 503" in messages
    assert "No event" in messages


@pytest.mark.asyncio
async def test_email_consumer_sends_only_for_slots() -> None:
    bus = LatestValueBus()
    sender = _RecordingSender()
    task = asyncio.create_task(EmailConsumer(bus.subscribe(), sender, "me@example.com").run())

    bus.publish(ErrorEvent("boom"))
    for _ in range(3):
        await asyncio.sleep(0)
    bus.publish(_slot_event())

    await _drain(bus, task)

    assert len(sender.sent) == 1
    assert sender.sent[0]["to_email"] == "me@example.com"
    assert sender.sent[0]["subject"] == EMAIL_SUBJECT
    assert "Boston" in sender.sent[0]["html"]


@pytest.mark.asyncio
async def test_email_failure_is_logged_and_consumer_keeps_running(caplog: pytest.LogCaptureFixture) -> None:
    bus = LatestValueBus()
    sender = _RecordingSender(fail=True)
    task = asyncio.create_task(EmailConsumer(bus.subscribe(), sender, "me@example.com").run())

    bus.publish(_slot_event(1))
    for _ in range(3):
        await asyncio.sleep(0)
    assert not task.done()

    bus.publish(_slot_event(3))
    await _drain(bus, task)

    assert len(sender.sent) == 2
    assert any("Failed to send email" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_slow_email_consumer_does_not_block_publisher_or_logger() -> None:
    bus = LatestValueBus()
    release = asyncio.Event()
    sent: list[str] = []

    class _SlowSender:
        async def send_html(self, *, to_email: str, subject: str, html: str) -> None:
            await release.wait()
            sent.append(html)

    logged: list[object] = []

    class _Recorder(LogConsumer):
        async def run(self) -> None:
            while await self._subscription.changed():
                logged.append(self._subscription.current())

    email_task = asyncio.create_task(EmailConsumer(bus.subscribe(), _SlowSender(), "me@example.com").run())
    log_task = asyncio.create_task(_Recorder(bus.subscribe()).run())

    bus.publish(_slot_event(1))
    for _ in range(3):
        await asyncio.sleep(0)
    # Email is stuck in send; the publisher and the logger carry on.
    bus.publish(_slot_event(2))
    bus.publish(_slot_event(3))
    for _ in range(3):
        await asyncio.sleep(0)
    assert logged[-1] == _slot_event(3)

    release.set()
    await _drain(bus, log_task)
    await asyncio.wait_for(email_task, timeout=1)

    # The first send, then only the latest value; day 2 was skipped.
    assert len(sent) == 2
    assert "2024-02-03" in sent[1]


@pytest.mark.asyncio
async def test_unexpected_sender_error_does_not_stop_email_consumer(caplog: pytest.LogCaptureFixture) -> None:
    bus = LatestValueBus()
    sent: list[str] = []

    class _BuggySender:
        async def send_html(self, *, to_email: str, subject: str, html: str) -> None:
            sent.append(html)
            if len(sent) == 1:
                raise KeyError("template")

    task = asyncio.create_task(EmailConsumer(bus.subscribe(), _BuggySender(), "me@example.com").run())

    bus.publish(_slot_event(1))
    for _ in range(3):
        await asyncio.sleep(0)
    assert not task.done()

    bus.publish(_slot_event(3))
    await _drain(bus, task)

    assert len(sent) == 2
    assert any("Unexpected error sending email" in r.getMessage() for r in caplog.records)
