"""
SOS Escalation Engine

Drives one user's emergency alert through its lifecycle:
- Activation: persist the alert, notify every contact, arm two timers
- Escalation: after a short delay, notify everyone again
- Expiry: when the countdown runs out, send a final wave and close the alert
- Cancel / resolve: stop pending timers and close the alert

All transitions run under one asyncio lock, so at most one alert is open
and timer fires never interleave with cancel().
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import timedelta, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from src.core.logging import LogContext, get_structured_logger
from src.models.alert import (
    Alert, AlertStatus, EngineState, FanOutKind, FanOutReport, LocationSnapshot,
    NotificationChannelType, NotificationLogEntry, utcnow
)
from .alert_store import AlertStore
from .contact_directory import ContactDirectory
from .errors import InvalidTransition, LocationUnavailable, PersistenceFailure
from .fanout import FanOutCoordinator
from .location_provider import LocationProvider
from .notification_channel import NotificationChannel


DEFAULT_DESCRIPTION = "SOS Emergency Activated"

StatusHandler = Callable[[Alert, Optional[AlertStatus], AlertStatus], Any]


@dataclass
class TransitionResult:
    """Outcome of an engine transition"""
    alert: Alert
    state: EngineState
    persistence_error: Optional[PersistenceFailure] = None

    @property
    def persisted(self) -> bool:
        return self.persistence_error is None


class ScheduledTimer:
    """
    Single-shot timer running as an asyncio task.

    Once the delay has elapsed the timer is marked fired and can no longer
    be cancelled; its callback is allowed to finish.
    """

    def __init__(self, name: str, delay: float,
                 callback: Callable[..., Awaitable[Any]], *args):
        self.logger = logging.getLogger(__name__)
        self.name = name
        self.delay = delay
        self.callback = callback
        self.args = args
        self.fired = False
        self.cancelled = False

        loop = asyncio.get_running_loop()
        self._loop = loop
        self.deadline = loop.time() + delay
        self._task = loop.create_task(self._run())

    async def _run(self):
        await asyncio.sleep(self.delay)
        self.fired = True
        try:
            await self.callback(*self.args)
        except Exception as e:
            self.logger.error(f"Error in {self.name} timer callback: {e}", exc_info=True)

    @property
    def pending(self) -> bool:
        """True while the timer can still fire"""
        return not self.fired and not self.cancelled and not self._task.done()

    def remaining(self) -> float:
        if not self.pending:
            return 0.0
        return max(0.0, self.deadline - self._loop.time())

    def cancel(self, force: bool = False) -> bool:
        """
        Stop the timer before it fires

        Args:
            force: Also abort a callback that is already running

        Returns:
            True if the timer was stopped
        """
        if self._task.done():
            return False
        if self.fired and not force:
            return False
        self.cancelled = True
        self._task.cancel()
        return True

    async def wait(self):
        """Wait for the timer task to finish, used by tests and shutdown"""
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class SOSEscalationEngine:
    """State machine for one user session's SOS alerts"""

    def __init__(
        self,
        store: AlertStore,
        contacts: ContactDirectory,
        channel: NotificationChannel,
        location_provider: LocationProvider,
        user_id: str = "guest",
        escalation_delay: float = 10,
        countdown: float = 300,
        pass_channels: Optional[Dict[FanOutKind, Sequence[NotificationChannelType]]] = None,
        deduplicate_contacts: bool = True,
        display_tz: Optional[tzinfo] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.audit = get_structured_logger('sos.audit')

        self.store = store
        self.contacts = contacts
        self.channel = channel
        self.location_provider = location_provider
        self.user_id = user_id
        self.escalation_delay = escalation_delay
        self.countdown = countdown
        self.fanout = FanOutCoordinator(
            contacts, channel,
            pass_channels=pass_channels,
            deduplicate=deduplicate_contacts,
            display_tz=display_tz
        )

        self._lock = asyncio.Lock()
        self._state = EngineState.IDLE
        self._alert: Optional[Alert] = None
        self._last_alert: Optional[Alert] = None
        self._sequence = 0
        self._escalation_timer: Optional[ScheduledTimer] = None
        self._countdown_timer: Optional[ScheduledTimer] = None
        self._handlers: List[StatusHandler] = []
        self._log: List[NotificationLogEntry] = []
        self.fan_out_history: List[FanOutReport] = []
        self._running = False

    # Lifecycle

    async def start(self):
        """Start the engine"""
        if self._running:
            return
        self._running = True
        self.logger.info(
            f"SOS escalation engine started for user {self.user_id} "
            f"(escalation {self.escalation_delay}s, countdown {self.countdown}s)"
        )
        if self.current_alert() is not None:
            self._arm_timers(self._alert)
            self.logger.info(f"Re-armed timers for open alert {self._alert.id}: {self.pending_timers()}")

    async def stop(self):
        """Stop pending timers; an open alert stays open and is re-armed by start()"""
        if not self._running:
            return
        self._running = False
        for timer in self._timers():
            timer.cancel(force=True)
        for timer in self._timers():
            await timer.wait()
        self.logger.info("SOS escalation engine stopped")

    # Queries

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_escalated(self) -> bool:
        return self._alert is not None and self._alert.is_escalated

    @property
    def last_alert(self) -> Optional[Alert]:
        return self._last_alert

    @property
    def notification_log(self) -> List[NotificationLogEntry]:
        """Log entries of the current or most recent alert"""
        return list(self._log)

    def current_alert(self) -> Optional[Alert]:
        """The open alert, if any"""
        if self._alert is not None and self._alert.is_open():
            return self._alert
        return None

    def time_remaining(self) -> timedelta:
        """Time left on the countdown, zero when nothing is open"""
        if self.current_alert() is None or self._countdown_timer is None:
            return timedelta(0)
        return timedelta(seconds=self._countdown_timer.remaining())

    def pending_timers(self) -> List[str]:
        return [timer.name for timer in self._timers() if timer.pending]

    def history(self, user_id: Optional[str] = None) -> List[Alert]:
        return self.store.list(user_id or self.user_id)

    def on_status_changed(self, handler: StatusHandler) -> None:
        """
        Register a status listener

        The handler is called with (alert, previous_status, new_status)
        after each transition has been applied. It may be a plain function
        or a coroutine function; errors it raises are logged.
        """
        self._handlers.append(handler)

    # Transitions

    async def activate(self, user_id: Optional[str] = None,
                       description: str = DEFAULT_DESCRIPTION) -> TransitionResult:
        """
        Raise a new SOS alert

        Args:
            user_id: Owner of the alert, defaults to the engine's user
            description: Free-text description stored with the alert

        Returns:
            TransitionResult with the new alert in ACTIVE state

        Raises:
            InvalidTransition: If an alert is already open
            LocationUnavailable: If no location fix can be obtained
        """
        async with self._lock:
            if self.current_alert() is not None:
                raise InvalidTransition(
                    f"Alert {self._alert.id} is already {self._alert.status.value}"
                )

            location = await self._read_location()
            if location is None:
                self.logger.warning("SOS activation refused: location unavailable")
                self.location_provider.request_permission()
                raise LocationUnavailable()

            self._sequence += 1
            alert = Alert(
                user_id=user_id or self.user_id,
                location=location,
                description=description,
                sequence=self._sequence
            )
            self.logger.critical(f"SOS ACTIVATED for user {alert.user_id}, alert {alert.id}")

            errors = []
            try:
                self.store.create(alert)
            except PersistenceFailure as e:
                errors.append(e)

            self._alert = alert
            self._last_alert = alert
            self._log = []
            self.fan_out_history = []
            self._state = EngineState.ACTIVE

            self._run_pass(alert, FanOutKind.ACTIVATION, errors)

            self._arm_timers(alert)

            result = TransitionResult(alert, EngineState.ACTIVE, errors[0] if errors else None)
            self._audit(alert, None, AlertStatus.ACTIVE, result)

        await self._emit(alert, None, AlertStatus.ACTIVE)
        return result

    async def handle_escalation_timeout(self, alert_id: str) -> Optional[TransitionResult]:
        """Escalation timer fire; no-op unless alert_id is still ACTIVE"""
        async with self._lock:
            alert = self._alert
            if alert is None or alert.id != alert_id or self._state != EngineState.ACTIVE:
                self.logger.debug(f"Ignoring escalation fire for alert {alert_id}")
                return None

            self.logger.warning(f"Escalating SOS alert {alert.id}: no response after {self.escalation_delay}s")
            await self._refresh_location(alert)

            errors = []
            self._run_pass(alert, FanOutKind.ESCALATION, errors)

            now = utcnow()
            alert.apply_status(AlertStatus.ESCALATED, now)
            self._state = EngineState.ESCALATED
            self._persist_status(alert, AlertStatus.ESCALATED, now, errors)

            result = TransitionResult(alert, EngineState.ESCALATED, errors[0] if errors else None)
            self._audit(alert, AlertStatus.ACTIVE, AlertStatus.ESCALATED, result)

        await self._emit(alert, AlertStatus.ACTIVE, AlertStatus.ESCALATED)
        return result

    async def handle_countdown_expiry(self, alert_id: str) -> Optional[TransitionResult]:
        """Countdown fire; sends the final wave and closes the alert"""
        async with self._lock:
            alert = self._alert
            if alert is None or alert.id != alert_id or self._state not in (
                EngineState.ACTIVE, EngineState.ESCALATED
            ):
                self.logger.debug(f"Ignoring countdown fire for alert {alert_id}")
                return None

            self.logger.warning(f"Countdown expired for SOS alert {alert.id}, sending final alert")
            await self._refresh_location(alert)

            errors = []
            report = self._run_pass(alert, FanOutKind.EXPIRY, errors)
            self.fanout.present_composer(alert, report.recipients, report.message)

            previous = alert.status
            now = utcnow()
            alert.apply_status(AlertStatus.EXPIRED, now)
            self._state = EngineState.EXPIRED
            self._persist_status(alert, AlertStatus.EXPIRED, now, errors)
            self._stop_timers()

            result = TransitionResult(alert, EngineState.EXPIRED, errors[0] if errors else None)
            self._audit(alert, previous, AlertStatus.EXPIRED, result)
            self._alert = None
            self._state = EngineState.IDLE

        await self._emit(alert, previous, AlertStatus.EXPIRED)
        return result

    async def cancel(self) -> Optional[TransitionResult]:
        """Cancel the open alert; a no-op when nothing is open"""
        self._stop_timers()
        return await self._close(AlertStatus.CANCELLED, EngineState.CANCELLED)

    async def resolve(self) -> Optional[TransitionResult]:
        """Mark the user safe and close the open alert"""
        self._stop_timers()
        return await self._close(AlertStatus.RESOLVED, EngineState.IDLE)

    async def _close(self, status: AlertStatus, reached: EngineState) -> Optional[TransitionResult]:
        async with self._lock:
            alert = self.current_alert()
            if alert is None:
                self.logger.debug(f"No open alert to mark {status.value}")
                return None

            self._stop_timers()
            previous = alert.status
            now = utcnow()
            alert.apply_status(status, now)
            self._state = reached

            errors = []
            self._persist_status(alert, status, now, errors)
            self.logger.info(f"SOS alert {alert.id} {status.value}")

            result = TransitionResult(alert, reached, errors[0] if errors else None)
            self._audit(alert, previous, status, result)
            self._alert = None
            self._state = EngineState.IDLE

        await self._emit(alert, previous, status)
        return result

    # Helpers

    def _timers(self) -> List[ScheduledTimer]:
        return [t for t in (self._escalation_timer, self._countdown_timer) if t is not None]

    def _arm_timers(self, alert: Alert) -> None:
        """Schedule the timers still due for alert, measured from its creation"""
        elapsed = max(0.0, (utcnow() - alert.created_at).total_seconds())
        self._escalation_timer = None
        if self._state == EngineState.ACTIVE:
            self._escalation_timer = ScheduledTimer(
                'escalation', max(0.0, self.escalation_delay - elapsed),
                self.handle_escalation_timeout, alert.id
            )
        self._countdown_timer = ScheduledTimer(
            'countdown', max(0.0, self.countdown - elapsed),
            self.handle_countdown_expiry, alert.id
        )

    def _stop_timers(self) -> None:
        for timer in self._timers():
            if timer.cancel():
                self.logger.debug(f"Cancelled {timer.name} timer")

    async def _read_location(self) -> Optional[LocationSnapshot]:
        try:
            return await self.location_provider.get_current_location()
        except Exception as e:
            self.logger.error(f"Location provider failed: {e}")
            return None

    async def _refresh_location(self, alert: Alert) -> None:
        """Replace the alert location with a fresh fix, keeping the old one on failure"""
        location = await self._read_location()
        if location is not None:
            alert.location = location
        else:
            self.logger.warning(f"Could not refresh location for alert {alert.id}, using last known")

    def _run_pass(self, alert: Alert, kind: FanOutKind,
                  errors: List[PersistenceFailure]) -> FanOutReport:
        report = self.fanout.run_pass(alert, kind)
        self._log.extend(report.entries)
        self.fan_out_history.append(report)

        try:
            self.store.append_notifications(report.entries)
        except PersistenceFailure as e:
            errors.append(e)
        return report

    def _persist_status(self, alert: Alert, status: AlertStatus, timestamp,
                        errors: List[PersistenceFailure]) -> None:
        # The in-memory state has already advanced; a failed write is reported, not raised
        try:
            self.store.update_status(alert.id, status, timestamp)
        except PersistenceFailure as e:
            errors.append(e)

    def _audit(self, alert: Alert, previous: Optional[AlertStatus],
               status: AlertStatus, result: TransitionResult) -> None:
        with LogContext(self.audit, alert_id=alert.id, user_id=alert.user_id,
                        sequence=alert.sequence) as log:
            log.info(
                "sos_transition",
                previous_status=previous.value if previous else None,
                status=status.value,
                notifications=len(self._log),
                persisted=result.persisted
            )
            if result.persistence_error is not None:
                log.error("sos_persistence_failure", error=str(result.persistence_error))

    async def _emit(self, alert: Alert, previous: Optional[AlertStatus], status: AlertStatus) -> None:
        for handler in list(self._handlers):
            try:
                outcome = handler(alert, previous, status)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self.logger.error(f"Status handler failed for alert {alert.id}: {e}", exc_info=True)
