from datetime import datetime

import pytz

from backend.alert_scheduler import AlertScheduler, LocalNotificationBackend
from backend.call_controller import (
    SWIPE_THRESHOLD,
    CallEvent,
    IncomingCallController,
)
from test_alert_scheduler import FakeFacility


def _ringing(**kwargs):
    controller = IncomingCallController(**kwargs)
    controller.ring(CallEvent('evt-1', 'Dentist', emoji='🦷', time='14:00'))
    return controller


def _swipe(controller, distance):
    controller.touch_start(60)
    controller.touch_move(60 + distance)
    return controller.release()


def test_swipe_past_eighty_percent_answers():
    answered = []
    controller = _ringing(on_answer=answered.append)

    assert _swipe(controller, 120) == 'idle'
    assert [e.id for e in answered] == ['evt-1']
    assert controller.last_session.outcome == 'answered'


def test_short_swipe_snaps_back_and_keeps_ringing():
    answered = []
    controller = _ringing(on_answer=answered.append)

    assert _swipe(controller, 118.5) == 'ringing'
    assert controller.drag_offset == 0
    assert answered == []


def test_drag_offset_is_clamped():
    controller = _ringing()
    controller.touch_start(60)
    assert controller.touch_move(10) == 0
    assert controller.touch_move(60 + 500) == SWIPE_THRESHOLD


def test_failing_answer_callback_returns_to_ringing():
    def boom(event):
        raise RuntimeError("audio session busy")

    controller = _ringing(on_answer=boom)
    assert _swipe(controller, 150) == 'ringing'
    assert controller.drag_offset == 0
    assert controller.is_active


def test_second_ring_replaces_active_session():
    dismissed = []
    controller = _ringing(on_dismiss=lambda event, outcome: dismissed.append((event.id, outcome)))

    controller.ring_from_voip({'eventId': 'evt-2', 'eventTitle': 'Standup', 'eventEmoji': '💼'})

    assert dismissed == [('evt-1', 'replaced')]
    assert controller.state == 'ringing'
    assert controller.session.event.id == 'evt-2'
    assert controller.session.event.emoji == '💼'


def test_decline_goes_idle():
    dismissed = []
    controller = _ringing(on_dismiss=lambda event, outcome: dismissed.append(outcome))
    assert controller.decline() == 'idle'
    assert dismissed == ['declined']


def test_snooze_reschedules_ten_minutes_out():
    tz = pytz.timezone('America/Sao_Paulo')
    facility = FakeFacility()
    controller = IncomingCallController(scheduler=AlertScheduler(LocalNotificationBackend(facility), tz=tz))
    controller.ring_from_local_alert({'eventId': 'evt-1', 'eventTitle': 'Dentist', 'eventTime': '14:00'})

    result = controller.snooze(now=tz.localize(datetime(2026, 3, 10, 13, 0)))

    assert controller.state == 'idle'
    assert controller.last_session.outcome == 'snoozed'
    assert result.scheduled
    assert result.alert.fires_at.replace(tzinfo=None) == datetime(2026, 3, 10, 13, 10)
    assert result.alert.payload['extra']['eventId'] == 'evt-1'


def test_snooze_without_scheduler_still_dismisses():
    controller = _ringing()
    assert controller.snooze() is None
    assert controller.state == 'idle'


def test_os_end_and_idle_actions():
    controller = _ringing()
    assert controller.call_ended() == 'idle'
    assert controller.last_session.outcome == 'ended'
    # Nothing ringing: gestures and actions are ignored
    assert controller.decline() == 'idle'
    assert controller.release() == 'idle'


def test_ring_during_answer_callback_keeps_new_call_ringing():
    dismissed = []
    controller = IncomingCallController(on_dismiss=lambda event, outcome: dismissed.append((event.id, outcome)))

    def ring_again(event):
        controller.ring(CallEvent('evt-2', 'Standup'))

    controller.on_answer = ring_again
    controller.ring(CallEvent('evt-1', 'Dentist'))

    assert _swipe(controller, 150) == 'ringing'
    assert controller.session.event.id == 'evt-2'
    assert dismissed == [('evt-1', 'replaced')]
