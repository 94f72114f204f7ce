"""
Server-side call alerts for users whose phone is asleep.

Runs every few minutes. Each timed, pending event that starts 55 to 65
minutes from now and has not been alerted yet gets a VoIP "incoming call"
push (iOS, critical alerts on) and/or a regular push, then is stamped so the
next run leaves it alone.
"""
import logging
from datetime import datetime, timedelta

import pytz

from backend import message_templates as templates
from backend.alert_scheduler import DEFAULT_EMOJI, format_event_time
from backend.batch_notifier import user_timezone
from backend.push_dispatcher import PLATFORM_IOS, send_push_to_user
from backend.voip_dispatcher import send_call_push
from models import db, CalendarEvent, DeviceRegistration, User, utcnow


WINDOW_START_MINUTES = 55
WINDOW_END_MINUTES = 65


def _event_start(event, tz):
    return tz.localize(datetime.combine(event.event_date, event.event_time))


def deliver_call_alert(event, user, settings=None, client=None, session=None, logger=None):
    """
    Ring and push one event's owner, then record the attempt on the event.

    Returns ``(voip_sent, push_sent)``. The event is only stamped as sent
    when at least one channel delivered.
    """
    logger = logger or logging.getLogger(__name__)
    language = templates.normalize_language(user.language)
    time_display = format_event_time(event.event_time)
    voip_sent = False
    push_sent = False

    if user.critical_alerts_enabled:
        registration = DeviceRegistration.query.filter_by(user_id=user.id, platform=PLATFORM_IOS).first()
        voip_token = registration.voip_token if registration else None
        if voip_token:
            result = send_call_push(
                voip_token,
                event.id,
                event.title,
                time=time_display,
                location=event.location,
                emoji=event.emoji,
                settings=settings,
                client=client,
                logger=logger,
            )
            voip_sent = result.success

    if user.push_enabled:
        results = send_push_to_user(
            user.id,
            templates.render("call_push_title", language),
            templates.render("call_push_body", language, title=event.title, time=time_display),
            {
                "type": "call-alert",
                "eventId": event.id,
                "eventTitle": event.title,
                "eventTime": time_display,
                "eventLocation": event.location or "",
                "eventEmoji": event.emoji or DEFAULT_EMOJI,
            },
            settings=settings,
            client=client,
            session=session,
            logger=logger,
        )
        push_sent = any(r.success for r in results)

    event.call_alert_attempts = (event.call_alert_attempts or 0) + 1
    if voip_sent or push_sent:
        event.call_alert_sent_at = utcnow()
        event.call_alert_outcome = 'sent'
    db.session.commit()
    return voip_sent, push_sent


def check_upcoming_alerts(now=None, settings=None, client=None, session=None, logger=None, default_tz="UTC"):
    logger = logger or logging.getLogger(__name__)
    if now is None:
        now = datetime.now(pytz.UTC)
    elif now.tzinfo is None:
        now = pytz.UTC.localize(now)
    window_start = now + timedelta(minutes=WINDOW_START_MINUTES)
    window_end = now + timedelta(minutes=WINDOW_END_MINUTES)

    stats = {
        'candidates': 0,
        'alerted': 0,
        'voip_sent': 0,
        'push_sent': 0,
        'undelivered': 0,
        'errors': 0,
        'error_details': [],
    }

    # Dates are local to each owner; a day either side covers every offset
    utc_day = now.date()
    events = CalendarEvent.query.filter(
        CalendarEvent.call_alert_enabled.is_(True),
        CalendarEvent.status == 'pending',
        CalendarEvent.call_alert_sent_at.is_(None),
        CalendarEvent.event_time.isnot(None),
        CalendarEvent.event_date >= utc_day - timedelta(days=1),
        CalendarEvent.event_date <= utc_day + timedelta(days=1),
    ).all()

    for event in events:
        try:
            user = db.session.get(User, event.user_id)
            if not user:
                continue
            tz = user_timezone(user, default_tz, logger=logger)
            if not (window_start <= _event_start(event, tz) <= window_end):
                continue
            stats['candidates'] += 1
            if user.call_enabled is False:
                continue

            voip_sent, push_sent = deliver_call_alert(
                event, user, settings=settings, client=client, session=session, logger=logger,
            )
            stats['voip_sent'] += int(voip_sent)
            stats['push_sent'] += int(push_sent)
            if voip_sent or push_sent:
                stats['alerted'] += 1
            else:
                stats['undelivered'] += 1
        except Exception as e:
            db.session.rollback()
            stats['errors'] += 1
            stats['error_details'].append({'event_id': event.id, 'error': str(e)})
            logger.error("Error sending call alert for event %s: %s", event.id, e)

    logger.info(
        "[upcoming_alerts] candidates=%s alerted=%s voip=%s push=%s undelivered=%s errors=%s",
        stats['candidates'], stats['alerted'], stats['voip_sent'], stats['push_sent'],
        stats['undelivered'], stats['errors'],
    )
    return stats
