"""
Application state and the single-threaded event dispatcher.

External collaborators (geolocation callbacks, the one-second scheduler,
the panic button, the check-in button) publish events onto one queue. The
dispatcher processes each event to completion before taking the next, so no
two handlers ever mutate the same session or contact concurrently.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from common.clock import Clock, utc_now
from common.constants import (
    CONTACTS_KEY,
    DEVICE_KEY,
    LOCATION_HISTORY_KEY,
    PANIC_REASON,
    PROFILE_KEY,
    RECORDINGS_KEY,
    RECORDINGS_LIMIT,
    SESSIONS_KEY,
    SETTINGS_KEY,
    SHARE_LOCATION_REASON,
    SNAPSHOT_HISTORY_LIMIT,
    TIMER_EXPIRED_REASON,
)
from common.errors import SafetyCoreError
from common.storage import InMemoryStore, KeyValueStore
from libs.audit_logger import AuditTrail
from libs.config import SafetySettings, config
from models.emergency import DeviceStatus, MedicalProfile, RecordingMeta, TriggerResult
from services.location.tracker import IsolationPredicate, LocationTrack, assume_isolated
from services.notification.manager import NotificationManager
from services.notification.senders import BaseSender, LoggingSender
from services.notification.templates import build_check_in_message
from services.safety_scoring.analyzer import ThreatMonitor
from services.sos.broker import SessionBroker
from services.sos.snapshot import SnapshotInputs
from services.sos.timer import CheckedIn, SafetyTimer
from services.user_management.contacts import ContactRegistry

logger = logging.getLogger(__name__)


class MediaRecorder(Protocol):
    def capture(self, kind: str) -> RecordingMeta: ...


# ========= Events =========


@dataclass(frozen=True)
class LocationFix:
    sample: Any


@dataclass(frozen=True)
class TimerTick:
    pass


@dataclass(frozen=True)
class StartTimer:
    minutes: Optional[int] = None


@dataclass(frozen=True)
class CheckIn:
    pass


@dataclass(frozen=True)
class PanicPressed:
    pass


@dataclass(frozen=True)
class CancelPanic:
    pass


@dataclass(frozen=True)
class ShareLocation:
    pass


@dataclass(frozen=True)
class SetTracking:
    enabled: bool


@dataclass(frozen=True)
class DeviceStatusChanged:
    status: DeviceStatus


@dataclass(frozen=True)
class RecordingCaptured:
    recording: RecordingMeta


@dataclass(frozen=True)
class Shutdown:
    pass


# ========= Application state =========


def _restore_model(model: Any, raw: Any, label: str) -> Any:
    if raw is None:
        return model()
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning("Persisted %s is invalid, using defaults: %s", label, e)
        return model()


class AppState:
    """Every component of one user's safety core, passed explicitly."""

    def __init__(
        self,
        settings: Optional[SafetySettings] = None,
        store: Optional[KeyValueStore] = None,
        sender: Optional[BaseSender] = None,
        media: Optional[MediaRecorder] = None,
        clock: Clock = utc_now,
        isolation: IsolationPredicate = assume_isolated,
        access_url_base: str = config.ACCESS_URL_BASE,
    ) -> None:
        self.clock = clock
        self.settings = settings or SafetySettings()
        self.store: KeyValueStore = store if store is not None else InMemoryStore()
        self.media = media

        self.audit = AuditTrail(clock)
        self.track = LocationTrack(isolation=isolation)
        self.monitor = ThreatMonitor()
        self.contacts = ContactRegistry(clock, audit=self.audit)
        self.timer = SafetyTimer()
        self.notifier = NotificationManager(sender or LoggingSender())
        self.broker = SessionBroker(
            self.contacts,
            clock=clock,
            access_url_base=access_url_base,
            notifier=self.notifier,
            audit=self.audit,
        )
        self.contacts.on_revoke(self.broker.deactivate_all_for)

        self.device = DeviceStatus()
        self.profile = MedicalProfile()
        self.recordings: List[RecordingMeta] = []
        self.tracking = self.settings.auto_start_tracking
        self.panic_mode = False

    def add_recording(self, recording: RecordingMeta) -> None:
        self.recordings.insert(0, recording)
        del self.recordings[RECORDINGS_LIMIT:]

    def snapshot_inputs(self) -> SnapshotInputs:
        return SnapshotInputs(
            current_location=self.track.current(),
            history=self.track.recent(SNAPSHOT_HISTORY_LIMIT),
            device=self.device,
            contacts=self.contacts.list(),
            recordings=list(self.recordings),
            profile=self.profile,
            settings=self.settings,
            threat=self.monitor.latest,
        )

    def save(self) -> None:
        self.store.set(CONTACTS_KEY, self.contacts.export())
        self.store.set(LOCATION_HISTORY_KEY, self.track.export())
        self.store.set(SESSIONS_KEY, self.broker.export())
        self.store.set(SETTINGS_KEY, self.settings.model_dump(mode="json"))
        self.store.set(PROFILE_KEY, self.profile.model_dump(mode="json"))
        self.store.set(DEVICE_KEY, self.device.model_dump(mode="json"))
        self.store.set(RECORDINGS_KEY, [r.model_dump(mode="json") for r in self.recordings])

    def load(self) -> None:
        """Restore persisted state; absent records mean empty/default state."""
        raw_settings = self.store.get(SETTINGS_KEY)
        if raw_settings is None:
            self.settings = SafetySettings()
        else:
            try:
                self.settings = SafetySettings.model_validate(raw_settings)
            except PydanticValidationError as e:
                logger.warning("Persisted settings are invalid, using defaults: %s", e)
                self.settings = SafetySettings()

        self.contacts.restore(self.store.get(CONTACTS_KEY) or [])
        self.track.restore(self.store.get(LOCATION_HISTORY_KEY) or [])
        self.broker.restore(self.store.get(SESSIONS_KEY) or [])
        self.profile = _restore_model(MedicalProfile, self.store.get(PROFILE_KEY), "profile")
        self.device = _restore_model(DeviceStatus, self.store.get(DEVICE_KEY), "device status")
        self.recordings = []
        for record in self.store.get(RECORDINGS_KEY) or []:
            try:
                self.recordings.append(RecordingMeta.model_validate(record))
            except PydanticValidationError as e:
                logger.warning("Skipping persisted recording: %s", e)
        del self.recordings[RECORDINGS_LIMIT:]
        self.tracking = self.settings.auto_start_tracking


# ========= Dispatcher =========


class SafetyDispatcher:
    def __init__(self, state: AppState) -> None:
        self.state = state
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._trigger_in_flight = False
        self._handlers: Dict[type, Callable[[Any], Any]] = {
            LocationFix: self._on_location_fix,
            TimerTick: self._on_tick,
            StartTimer: self._on_start_timer,
            CheckIn: self._on_check_in,
            PanicPressed: self._on_panic,
            CancelPanic: self._on_cancel_panic,
            ShareLocation: self._on_share_location,
            SetTracking: self._on_set_tracking,
            DeviceStatusChanged: self._on_device_status,
            RecordingCaptured: self._on_recording,
        }

    async def publish(self, event: Any) -> None:
        await self._queue.put(event)

    def publish_nowait(self, event: Any) -> None:
        self._queue.put_nowait(event)

    async def run(self) -> None:
        """Consume events until a Shutdown event arrives."""
        while True:
            event = await self._queue.get()
            try:
                if isinstance(event, Shutdown):
                    logger.info("Safety dispatcher stopping")
                    return
                self.handle(event)
            except SafetyCoreError as e:
                logger.warning("Event %s rejected: %s", type(event).__name__, e.message)
            except Exception:
                logger.exception("Event %s failed; continuing", type(event).__name__)
            finally:
                self._queue.task_done()

    def handle(self, event: Any) -> Any:
        """Process one event to completion and persist the resulting state."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise ValueError(f"Unsupported event: {type(event).__name__}")
        result = handler(event)
        self.state.save()
        return result

    def trigger(self, reason: str) -> Optional[TriggerResult]:
        """
        Open an emergency session unless one is already being composed.

        Handlers run to completion, so the flag is only ever seen set by a
        re-entrant call made while the broker composes or dispatches the
        alert (for example from a sender or media callback).
        """
        if self._trigger_in_flight:
            logger.warning("Trigger '%s' ignored: another trigger is in flight", reason)
            return None

        self._trigger_in_flight = True
        try:
            return self.state.broker.trigger(reason, self.state.snapshot_inputs())
        finally:
            self._trigger_in_flight = False

    # ========= Handlers =========

    def _on_location_fix(self, event: LocationFix):
        state = self.state
        sample = state.track.record(event.sample)
        state.monitor.update(
            sample,
            state.track,
            enabled=state.settings.ai_monitoring,
            tz=state.settings.zone(),
        )
        return sample

    def _on_tick(self, event: TimerTick) -> Optional[TriggerResult]:
        expired = self.state.timer.tick()
        if expired is None:
            return None
        self.state.audit.write("timer", f"Timer expired after {expired.duration_seconds}s")
        return self.trigger(TIMER_EXPIRED_REASON)

    def _on_start_timer(self, event: StartTimer) -> Dict[str, Any]:
        timer = self.state.timer
        if event.minutes is None:
            timer.start_seconds(self.state.settings.emergency_timeout_seconds)
        else:
            timer.start(event.minutes)
        self.state.audit.write("timer", f"Timer started for {timer.duration_seconds}s")
        return timer.status()

    def _on_check_in(self, event: CheckIn) -> CheckedIn:
        state = self.state
        current = state.track.current()
        checked = state.timer.check_in(
            {
                "location": current.model_dump(mode="json"),
                "battery": state.device.battery_percent,
            }
        )
        message = build_check_in_message(current, state.clock())
        sent = state.notifier.broadcast(state.contacts.notifiable(), message)
        state.audit.write("timer", f"Checked in; message handed over for {sent} contact(s)")
        return checked

    def _on_panic(self, event: PanicPressed) -> Optional[TriggerResult]:
        state = self.state
        if state.panic_mode:
            logger.info("Panic ignored: panic mode already active")
            return None

        state.panic_mode = True
        state.tracking = True
        if state.settings.auto_record and state.media is not None:
            try:
                state.add_recording(state.media.capture("emergency"))
            except Exception:
                logger.exception("Automatic recording could not be started")
        return self.trigger(PANIC_REASON)

    def _on_cancel_panic(self, event: CancelPanic) -> None:
        self.state.panic_mode = False

    def _on_share_location(self, event: ShareLocation) -> Optional[TriggerResult]:
        return self.trigger(SHARE_LOCATION_REASON)

    def _on_set_tracking(self, event: SetTracking) -> bool:
        self.state.tracking = event.enabled
        return self.state.tracking

    def _on_device_status(self, event: DeviceStatusChanged) -> DeviceStatus:
        self.state.device = event.status
        return self.state.device

    def _on_recording(self, event: RecordingCaptured) -> RecordingMeta:
        self.state.add_recording(event.recording)
        return event.recording
