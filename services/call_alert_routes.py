"""Call alert routes: schedule, cancel, snooze, outcome and the pending list."""
import pytz

from backend.alert_scheduler import SNOOZE_MINUTES, pending_call_alerts
from backend.call_controller import OUTCOME_ANSWERED, OUTCOME_SNOOZED
from services.validation_service import normalize_call_outcome, parse_positive_int


def _utc_naive(value):
    return value.astimezone(pytz.UTC).replace(tzinfo=None)


def schedule_call_alert(event_id):
    import app as a

    CalendarEvent = a.CalendarEvent
    alert_scheduler_for = a.alert_scheduler_for
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    event = CalendarEvent.query.filter_by(id=event_id, user_id=user.id).first_or_404()

    result = alert_scheduler_for(user).schedule(event)
    # The flag is recorded even when this instant is skipped so the server sweep still covers it
    event.call_alert_enabled = True
    if result.scheduled:
        event.call_alert_scheduled_at = _utc_naive(result.alert.fires_at)
        event.call_alert_outcome = 'scheduled'
    db.session.commit()

    status = 500 if result.status == 'failed' else 200
    return jsonify(result.to_dict()), status


def cancel_call_alert(event_id):
    import app as a

    CalendarEvent = a.CalendarEvent
    alert_scheduler_for = a.alert_scheduler_for
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    event = CalendarEvent.query.filter_by(id=event_id, user_id=user.id).first_or_404()

    cancelled = alert_scheduler_for(user).cancel(event.id)
    event.call_alert_enabled = False
    event.call_alert_scheduled_at = None
    db.session.commit()
    return jsonify({'cancelled': cancelled})


def snooze_call_alert(event_id):
    import app as a

    CalendarEvent = a.CalendarEvent
    alert_scheduler_for = a.alert_scheduler_for
    app = a.app
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    event = CalendarEvent.query.filter_by(id=event_id, user_id=user.id).first_or_404()

    data = request.get_json(silent=True) or {}
    minutes = parse_positive_int(data.get('snooze_minutes'), default=SNOOZE_MINUTES)
    if minutes is None:
        return jsonify({'error': 'Snooze minutes must be a positive integer'}), 400

    result = alert_scheduler_for(user).schedule_snooze(event, minutes=minutes)
    if not result.scheduled:
        app.logger.error("Error scheduling snoozed call alert for event %s: %s", event.id, result.reason)
        return jsonify({'error': 'Failed to schedule snooze', 'reason': result.reason}), 500

    event.call_alert_scheduled_at = _utc_naive(result.alert.fires_at)
    event.call_alert_outcome = OUTCOME_SNOOZED
    db.session.commit()
    return jsonify({
        'snoozed': True,
        'snooze_until': result.alert.fires_at.isoformat(),
        'snooze_minutes': minutes,
    })


def record_call_outcome(event_id):
    import app as a

    CalendarEvent = a.CalendarEvent
    db = a.db
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    utcnow = a.utcnow

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    event = CalendarEvent.query.filter_by(id=event_id, user_id=user.id).first_or_404()

    data = request.get_json(silent=True) or {}
    outcome = normalize_call_outcome(data.get('outcome'))
    if not outcome:
        return jsonify({'error': 'outcome must be answered, declined, snoozed or missed'}), 400
    event.call_alert_outcome = outcome
    if outcome == OUTCOME_ANSWERED:
        event.call_alert_answered_at = utcnow()
    db.session.commit()
    return jsonify(event.to_dict())


def get_pending_call_alerts():
    """Upcoming call alerts for a client that schedules them on the device."""
    import app as a

    CalendarEvent = a.CalendarEvent
    app = a.app
    datetime = a.datetime
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    user_timezone = a.user_timezone

    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    tz = user_timezone(user, app.config['DEFAULT_TIMEZONE'], logger=app.logger)
    now = datetime.now(tz)
    events = CalendarEvent.query.filter(
        CalendarEvent.user_id == user.id,
        CalendarEvent.call_alert_enabled.is_(True),
        CalendarEvent.status == 'pending',
        CalendarEvent.event_date >= now.date(),
    ).all()
    return jsonify({'alerts': pending_call_alerts(events, tz, now=now)})
