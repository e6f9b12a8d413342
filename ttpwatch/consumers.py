from __future__ import annotations

import logging
from typing import Protocol

from ttpwatch.bus import Subscription
from ttpwatch.domain import ErrorEvent, NoEvent, SlotAvailableEvent
from ttpwatch.email_notifier import EmailSendError

logger = logging.getLogger(__name__)

SCHEDULER_LINK = (
    "https://ttp.cbp.dhs.gov/schedulerui/schedule-interview/location"
    "?lang=en&vo=true&returnUrl=ttp-external&service=UP"
)
SCHEDULER_DISPLAY_TEXT = "https://ttp.cbp.dhs.gov/schedulerui/schedule-interview/location"
EMAIL_SUBJECT = "TTP Slot Available!"


class HtmlSender(Protocol):
    async def send_html(self, *, to_email: str, subject: str, html: str) -> None: ...


def _format_start(event: SlotAvailableEvent) -> str:
    return event.slot.start_timestamp.strftime("%Y-%m-%d %H:%M")


def format_slot_email(event: SlotAvailableEvent) -> str:
    return (
        "<html>\n"
        "    <body>\n"
        f"        A Trusted Traveler Program slot has opened for the {event.location.name}"
        f" at {_format_start(event)}. <br>\n"
        f'        Schedule at <a href="{SCHEDULER_LINK}">{SCHEDULER_DISPLAY_TEXT}</a>.\n'
        "    </body>\n"
        "</html>"
    )


class LogConsumer:
    """Writes every event to the log."""

    def __init__(self, subscription: Subscription) -> None:
        self._subscription = subscription

    async def run(self) -> None:
        while await self._subscription.changed():
            event = self._subscription.current()

            if isinstance(event, SlotAvailableEvent):
                logger.info("%s has an open slot at %s", event.location.name, _format_start(event))
            elif isinstance(event, ErrorEvent):
                logger.error("Error %s", event.message)
            elif isinstance(event, NoEvent):
                logger.debug("No event")


class EmailConsumer:
    """Sends one email per reported slot. Delivery failures are logged, not raised."""

    def __init__(self, subscription: Subscription, sender: HtmlSender, to_email: str) -> None:
        self._subscription = subscription
        self._sender = sender
        self._to_email = to_email

    async def run(self) -> None:
        while await self._subscription.changed():
            # Events are frozen, holding a reference while sending is safe.
            event = self._subscription.current()
            if not isinstance(event, SlotAvailableEvent):
                continue

            try:
                await self._sender.send_html(
                    to_email=self._to_email,
                    subject=EMAIL_SUBJECT,
                    html=format_slot_email(event),
                )
                logger.info("Sent email to %s", self._to_email)
            except EmailSendError as e:
                logger.error("Failed to send email to %s (%s)", self._to_email, e)
            except Exception as e:
                # Best-effort: the next reported slot gets a fresh attempt.
                logger.warning(
                    "Unexpected error sending email to %s (%s: %s)",
                    self._to_email,
                    type(e).__name__,
                    e,
                    exc_info=True,
                )
