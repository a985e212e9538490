"""
Notification channels for emergency contacts

A channel takes a call or text request and hands it off. Hand-off is
synchronous and never waits for delivery; a channel signals a failed
hand-off by raising NotificationDispatchFailure.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote

import aiohttp

from src.models.alert import Alert, EmergencyContact, utcnow
from .errors import NotificationDispatchFailure


def dialer_url(contact: EmergencyContact) -> str:
    return f"tel://{contact.dialable_phone()}"


def sms_url(contact: EmergencyContact, message: str) -> str:
    return f"sms://{contact.dialable_phone()}&body={quote(message, safe='')}"


class NotificationChannel(ABC):
    """Dispatches calls and texts to emergency contacts"""

    @abstractmethod
    def place_call(self, contact: EmergencyContact, alert: Alert) -> None:
        """Start a call to the contact"""
        pass

    @abstractmethod
    def send_text(self, contact: EmergencyContact, message: str, alert: Alert) -> None:
        """Queue a text message to the contact"""
        pass

    @abstractmethod
    def present_composer(self, contacts: List[EmergencyContact], message: str, alert: Alert) -> None:
        """Offer a pre-filled message for the user to confirm and send"""
        pass

    async def close(self) -> None:
        """Release channel resources"""
        pass


@dataclass
class DispatchRecord:
    """One action handed to the logging channel"""
    action: str
    alert_id: str
    url: str
    contact_ids: List[str] = field(default_factory=list)
    message: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


class LoggingNotificationChannel(NotificationChannel):
    """
    Channel that records every dispatch and writes it to the log.

    Stands in for the phone dialer and SMS composer when running headless.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.records: List[DispatchRecord] = []

    def place_call(self, contact: EmergencyContact, alert: Alert) -> None:
        url = dialer_url(contact)
        self.records.append(DispatchRecord('call', alert.id, url, [contact.id]))
        self.logger.info(f"Call requested for {contact.name} ({url}) on alert {alert.id}")

    def send_text(self, contact: EmergencyContact, message: str, alert: Alert) -> None:
        url = sms_url(contact, message)
        self.records.append(DispatchRecord('sms', alert.id, url, [contact.id], message))
        self.logger.info(f"Text queued for {contact.name} on alert {alert.id}")

    def present_composer(self, contacts: List[EmergencyContact], message: str, alert: Alert) -> None:
        recipients = ",".join(c.dialable_phone() for c in contacts)
        url = f"sms://{recipients}&body={quote(message, safe='')}"
        self.records.append(
            DispatchRecord('composer', alert.id, url, [c.id for c in contacts], message)
        )
        self.logger.warning(
            f"Message composer presented for {len(contacts)} contacts on alert {alert.id}"
        )

    def actions(self, action: str) -> List[DispatchRecord]:
        return [r for r in self.records if r.action == action]


class WebhookNotificationChannel(NotificationChannel):
    """
    Channel that forwards calls and texts to a voice/SMS gateway over HTTP.

    Each request is posted from a background task so hand-off returns
    immediately. Errors from the gateway are only logged, since delivery
    is never reported back to the engine.
    """

    def __init__(
        self,
        call_url: Optional[str],
        sms_url: Optional[str],
        timeout_seconds: float = 10,
        headers: Optional[Dict[str, str]] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.call_url = call_url
        self.sms_url = sms_url
        self.timeout_seconds = timeout_seconds
        self.headers = headers or {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._pending: Set[asyncio.Task] = set()

    def place_call(self, contact: EmergencyContact, alert: Alert) -> None:
        payload = {
            'alert_id': alert.id,
            'contact_id': contact.id,
            'to': contact.dialable_phone(),
        }
        self._dispatch(self.call_url, payload, contact, 'call')

    def send_text(self, contact: EmergencyContact, message: str, alert: Alert) -> None:
        payload = {
            'alert_id': alert.id,
            'contact_id': contact.id,
            'to': contact.dialable_phone(),
            'body': message,
        }
        self._dispatch(self.sms_url, payload, contact, 'sms')

    def present_composer(self, contacts: List[EmergencyContact], message: str, alert: Alert) -> None:
        # A gateway has no user to confirm with; send the final text as a group
        if not contacts:
            return
        payload = {
            'alert_id': alert.id,
            'to': [c.dialable_phone() for c in contacts],
            'body': message,
            'requires_confirmation': True,
        }
        self._dispatch(self.sms_url, payload, contacts[0], 'sms')

    def _dispatch(self, url: Optional[str], payload: Dict[str, Any],
                  contact: EmergencyContact, channel: str) -> None:
        if not url:
            raise NotificationDispatchFailure(
                f"No {channel} webhook configured", contact_id=contact.id, channel=channel
            )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise NotificationDispatchFailure(
                f"No event loop to dispatch {channel}", contact_id=contact.id, channel=channel
            ) from e

        task = loop.create_task(self._post(url, payload, channel))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, url: str, payload: Dict[str, Any], channel: str) -> None:
        try:
            session = await self._get_session()
            async with session.post(url, json=payload, headers=self.headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    self.logger.error(
                        f"{channel} webhook returned {response.status} for alert "
                        f"{payload.get('alert_id')}: {body[:200]}"
                    )
                else:
                    self.logger.debug(f"{channel} webhook accepted for alert {payload.get('alert_id')}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"{channel} webhook failed for alert {payload.get('alert_id')}: {e}")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight webhook requests"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
