"""
Incoming-call alert state machine (client side).

Exactly one session can be active per device. The controller is driven by
interleaved callbacks on a single event loop, so a second ring that arrives
while one is active explicitly ends the old session instead of queueing.
"""
import logging

from backend.alert_scheduler import DEFAULT_EMOJI, SNOOZE_MINUTES


STATE_IDLE = "idle"
STATE_RINGING = "ringing"
STATE_ANSWERING = "answering"
STATE_ENDED = "ended"

OUTCOME_ANSWERED = "answered"
OUTCOME_DECLINED = "declined"
OUTCOME_SNOOZED = "snoozed"
OUTCOME_REPLACED = "replaced"
OUTCOME_ENDED = "ended"

SWIPE_THRESHOLD = 150
ANSWER_RATIO = 0.8
SWIPE_ORIGIN_X = 60


class CallEvent:
    """The subset of an event the call screen shows."""

    def __init__(self, id, title, emoji=None, time=None, location=None):
        self.id = id
        self.title = title
        self.emoji = emoji or DEFAULT_EMOJI
        self.time = time or ""
        self.location = location or ""

    @classmethod
    def from_voip_payload(cls, payload):
        return cls(
            id=payload.get("eventId") or payload.get("id"),
            title=payload.get("eventTitle") or payload.get("name") or "Event",
            emoji=payload.get("eventEmoji"),
            time=payload.get("eventTime"),
            location=payload.get("eventLocation"),
        )


class CallSession:
    def __init__(self, event=None, state=STATE_IDLE):
        self.state = state
        self.event = event
        self.drag_offset = 0.0
        self.touch_origin = None
        self.outcome = None


class IncomingCallController:
    def __init__(self, scheduler=None, on_answer=None, on_dismiss=None, logger=None):
        self.scheduler = scheduler
        self.on_answer = on_answer
        self.on_dismiss = on_dismiss
        self.logger = logger or logging.getLogger(__name__)
        self.session = CallSession()
        self.last_session = None

    @property
    def state(self):
        return self.session.state

    @property
    def drag_offset(self):
        return self.session.drag_offset

    @property
    def is_active(self):
        return self.session.state != STATE_IDLE

    def _finish(self, outcome):
        """End the active session and reset to idle."""
        finished = self.session
        finished.state = STATE_ENDED
        finished.outcome = outcome
        finished.drag_offset = 0.0
        finished.touch_origin = None
        self.last_session = finished
        self.session = CallSession()
        if self.on_dismiss:
            try:
                self.on_dismiss(finished.event, outcome)
            except Exception:
                self.logger.exception("Call screen dismiss callback failed")
        return finished

    def ring(self, event):
        if self.is_active:
            self.logger.info(
                "Incoming call for %s replaces active call for %s",
                event.id, self.session.event.id if self.session.event else None,
            )
            self._finish(OUTCOME_REPLACED)
        self.session = CallSession(event=event, state=STATE_RINGING)
        self.logger.info("Ringing for event %s", event.id)
        return self.session

    def ring_from_voip(self, payload):
        return self.ring(CallEvent.from_voip_payload(payload or {}))

    def ring_from_local_alert(self, extra):
        return self.ring(CallEvent.from_voip_payload(extra or {}))

    # Swipe-to-answer gesture

    def touch_start(self, x=SWIPE_ORIGIN_X):
        if self.session.state != STATE_RINGING:
            return
        self.session.touch_origin = x

    def touch_move(self, x):
        session = self.session
        if session.state != STATE_RINGING or session.touch_origin is None:
            return session.drag_offset
        session.drag_offset = max(0.0, min(float(x - session.touch_origin), float(SWIPE_THRESHOLD)))
        return session.drag_offset

    def release(self):
        """Answer when the swipe went far enough, otherwise snap back."""
        session = self.session
        if session.state != STATE_RINGING:
            return self.state
        session.touch_origin = None
        if session.drag_offset >= SWIPE_THRESHOLD * ANSWER_RATIO:
            return self.answer()
        session.drag_offset = 0.0
        return self.state

    def answer(self):
        session = self.session
        if session.state != STATE_RINGING:
            return self.state
        session.state = STATE_ANSWERING
        if self.on_answer:
            try:
                self.on_answer(session.event)
            except Exception:
                self.logger.exception("Answer callback failed for event %s", session.event.id)
                if self.session is session:
                    session.state = STATE_RINGING
                    session.drag_offset = 0.0
                return self.state
        # The callback may have rung a new call that replaced this one
        if self.session is session:
            self._finish(OUTCOME_ANSWERED)
        return self.state

    def decline(self):
        if self.session.state != STATE_RINGING:
            return self.state
        self._finish(OUTCOME_DECLINED)
        return self.state

    def snooze(self, now=None):
        """Dismiss and ring again ``SNOOZE_MINUTES`` from now for the same event."""
        if self.session.state != STATE_RINGING:
            return None
        event = self.session.event
        self._finish(OUTCOME_SNOOZED)
        if self.scheduler is None:
            self.logger.warning("No alert scheduler attached, snooze for %s not rescheduled", event.id)
            return None
        alert_event = {
            "id": event.id,
            "title": event.title,
            "event_time": event.time or None,
            "location": event.location,
            "emoji": event.emoji,
        }
        return self.scheduler.schedule_snooze(alert_event, minutes=SNOOZE_MINUTES, now=now)

    def call_ended(self):
        """The OS tore the call UI down (e.g. the user ended it natively)."""
        if self.is_active:
            self._finish(OUTCOME_ENDED)
        return self.state
