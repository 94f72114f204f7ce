"""
"Call me" reminder scheduling.

The fire instant is derived from the event (one hour before a timed event,
09:00 local for an all-day one) and registered with a SchedulingBackend that
is picked once at startup: the host's local-notification facility when it is
available, otherwise an in-process APScheduler job that only fires while this
process is alive.
"""
import logging
from datetime import date, datetime, time, timedelta

import pytz
from apscheduler.jobstores.base import JobLookupError

from backend.notification_identity import derive_notification_id


CHANNEL_OS_LOCAL = "os-local"
CHANNEL_TIMER = "in-memory-timer"

CALL_ALERT_LEAD_MINUTES = 60
ALL_DAY_ALERT_TIME = time(9, 0)
SNOOZE_MINUTES = 10
DEFAULT_EMOJI = "\U0001F4C5"
CALL_ALERT_TITLE = "\U0001F4DE Call reminder"

STATUS_SCHEDULED = "scheduled"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


def event_field(event, name, default=None):
    if isinstance(event, dict):
        return event.get(name, default)
    return getattr(event, name, default)


def coerce_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def coerce_time(value):
    """Accept a time object or an "HH:MM[:SS]" string; blank means all-day."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    parts = str(value).strip().split(":")
    return time(int(parts[0]), int(parts[1]) if len(parts) > 1 else 0)


def format_event_time(value):
    try:
        parsed = coerce_time(value)
    except (TypeError, ValueError):
        return str(value)
    return parsed.strftime("%H:%M") if parsed else ""


def _as_timezone(tz):
    if tz is None:
        return pytz.UTC
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def compute_fire_instant(event, tz):
    """Return the aware local instant at which the call alert should fire."""
    tz = _as_timezone(tz)
    event_date = coerce_date(event_field(event, "event_date"))
    if event_date is None:
        raise ValueError("Event has no date")
    event_time = coerce_time(event_field(event, "event_time"))
    if event_time is None:
        return tz.localize(datetime.combine(event_date, ALL_DAY_ALERT_TIME))
    starts_at = tz.localize(datetime.combine(event_date, event_time))
    return tz.normalize(starts_at - timedelta(minutes=CALL_ALERT_LEAD_MINUTES))


def build_alert_payload(event):
    title = event_field(event, "title") or ""
    time_display = format_event_time(event_field(event, "event_time"))
    return {
        "title": CALL_ALERT_TITLE,
        "body": f"{title} at {time_display}" if time_display else title,
        "extra": {
            "type": "call-alert",
            "eventId": str(event_field(event, "id")),
            "eventTitle": title,
            "eventTime": time_display,
            "eventLocation": event_field(event, "location") or "",
            "eventEmoji": event_field(event, "emoji") or DEFAULT_EMOJI,
        },
    }


class ScheduledAlert:
    """A pending delivery intent registered with one backend."""

    def __init__(self, notification_id, fires_at, channel, payload):
        self.notification_id = notification_id
        self.fires_at = fires_at
        self.channel = channel
        self.payload = payload

    def to_dict(self):
        return {
            "notification_id": self.notification_id,
            "fires_at": self.fires_at.isoformat(),
            "channel": self.channel,
            "payload": self.payload,
        }


class ScheduleResult:
    def __init__(self, status, alert=None, reason=None):
        self.status = status
        self.alert = alert
        self.reason = reason

    @property
    def scheduled(self):
        return self.status == STATUS_SCHEDULED

    def to_dict(self):
        data = {"status": self.status}
        if self.alert is not None:
            data["alert"] = self.alert.to_dict()
        if self.reason:
            data["reason"] = self.reason
        return data


class LocalNotificationBackend:
    """Host OS scheduler; survives app suspension."""

    channel = CHANNEL_OS_LOCAL

    def __init__(self, facility):
        self.facility = facility

    def register(self, notification_id, fires_at, payload):
        self.facility.schedule(notification_id, fires_at, payload)

    def cancel(self, notification_id):
        self.facility.cancel(notification_id)
        return True


class TimerBackend:
    """In-process fallback: one APScheduler date job per notification id."""

    channel = CHANNEL_TIMER

    def __init__(self, scheduler, callback):
        self.scheduler = scheduler
        self.callback = callback

    @staticmethod
    def job_id(notification_id):
        return f"call_alert_{notification_id}"

    def register(self, notification_id, fires_at, payload):
        self.scheduler.add_job(
            self.callback,
            'date',
            run_date=fires_at,
            args=[payload],
            id=self.job_id(notification_id),
            replace_existing=True,
        )

    def cancel(self, notification_id):
        try:
            self.scheduler.remove_job(self.job_id(notification_id))
        except JobLookupError:
            return False
        return True

    def is_registered(self, notification_id):
        return self.scheduler.get_job(self.job_id(notification_id)) is not None


def select_backend(facility=None, scheduler=None, callback=None, logger=None):
    """Probe the local-notification facility once; fall back to the timer."""
    logger = logger or logging.getLogger(__name__)
    if facility is not None:
        try:
            available = bool(facility.is_available())
        except Exception as exc:
            logger.warning("Local notification probe failed: %s", exc)
            available = False
        if available:
            logger.info("Call alerts use the native local-notification scheduler")
            return LocalNotificationBackend(facility)
    if scheduler is None:
        raise ValueError("No local notification facility and no timer scheduler")
    logger.info("Call alerts use the in-process timer fallback (process lifetime only)")
    return TimerBackend(scheduler, callback)


class AlertScheduler:
    def __init__(self, backend, tz=None, logger=None):
        self.backend = backend
        self.tz = _as_timezone(tz)
        self.logger = logger or logging.getLogger(__name__)

    def _now(self, now):
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return self.tz.localize(now)
        return now

    def schedule(self, event, now=None):
        """Register the call alert for ``event`` or report why it was skipped."""
        try:
            fires_at = compute_fire_instant(event, self.tz)
        except ValueError as exc:
            self.logger.warning("Cannot compute call alert for event %s: %s", event_field(event, "id"), exc)
            return ScheduleResult(STATUS_SKIPPED, reason=str(exc))
        return self._register(event, fires_at, now)

    def schedule_snooze(self, event, minutes=SNOOZE_MINUTES, now=None):
        fires_at = self._now(now) + timedelta(minutes=minutes)
        return self._register(event, fires_at, now)

    def _register(self, event, fires_at, now):
        event_id = event_field(event, "id")
        notification_id = derive_notification_id(str(event_id))
        if fires_at <= self._now(now):
            self.logger.info("Call alert for event %s already passed (%s), skipping", event_id, fires_at.isoformat())
            # A registration for the event's previous time must not fire
            try:
                self.backend.cancel(notification_id)
            except Exception as exc:
                self.logger.warning("Could not cancel stale call alert %s: %s", notification_id, exc)
            return ScheduleResult(STATUS_SKIPPED, reason="fire time has passed")

        payload = build_alert_payload(event)
        try:
            # Implicit replace: drop whatever was registered under this id first
            self.backend.cancel(notification_id)
            self.backend.register(notification_id, fires_at, payload)
        except Exception as exc:
            self.logger.error("Error scheduling call alert for event %s: %s", event_id, exc)
            return ScheduleResult(STATUS_FAILED, reason=str(exc))

        alert = ScheduledAlert(notification_id, fires_at, self.backend.channel, payload)
        self.logger.info(
            "Scheduled call alert %s for event %s at %s via %s",
            notification_id, event_id, fires_at.isoformat(), self.backend.channel,
        )
        return ScheduleResult(STATUS_SCHEDULED, alert=alert)

    def cancel(self, event_id):
        """Best-effort cancel; a fire racing this call may still be delivered."""
        notification_id = derive_notification_id(str(event_id))
        try:
            cancelled = self.backend.cancel(notification_id)
        except Exception as exc:
            self.logger.debug("Could not cancel call alert %s: %s", notification_id, exc)
            return False
        if cancelled:
            self.logger.info("Cancelled call alert %s for event %s", notification_id, event_id)
        return cancelled


def pending_call_alerts(events, tz, now=None, window_days=7):
    """List upcoming fire instants so a client can schedule them itself."""
    tz = _as_timezone(tz)
    now = now or datetime.now(tz)
    end_window = now + timedelta(days=window_days)
    pending = []
    for event in events:
        try:
            fires_at = compute_fire_instant(event, tz)
        except ValueError:
            continue
        if now < fires_at <= end_window:
            event_id = str(event_field(event, "id"))
            pending.append({
                "event_id": event_id,
                "notification_id": derive_notification_id(event_id),
                "title": event_field(event, "title"),
                "fires_at": fires_at.isoformat(),
                "fires_at_ts": int(fires_at.astimezone(pytz.UTC).timestamp() * 1000),
                "payload": build_alert_payload(event),
            })
    pending.sort(key=lambda item: item["fires_at_ts"])
    return pending
