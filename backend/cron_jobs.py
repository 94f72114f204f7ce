"""The per-channel sweeps run by the hourly cron trigger."""
import logging
from datetime import timedelta

from sqlalchemy import and_, or_

from backend import message_templates as templates
from backend.alert_scheduler import DEFAULT_EMOJI, format_event_time
from backend.batch_notifier import BatchJob, BatchMessage, run_batch
from backend.push_dispatcher import send_push_to_user
from models import db, CalendarEvent, User
from services.ai_gateway import call_chat_text
from services.weather_client import get_weather_forecast


DAILY_OVERVIEW_HOUR = 7
DAILY_OVERVIEW_PLANS = ("plus", "super")
MISSED_EVENTS_LIMIT = 3

OVERVIEW_SYSTEM_PROMPT = (
    "You are a friendly calendar assistant. Write a good-morning message that "
    "summarises the user's events for today.\n"
    "RULES:\n"
    "- Friendly and motivating, casual tone\n"
    "- Say how many events there are today\n"
    "- List the events with their times\n"
    "- End with one short motivational line\n"
    "- At most 150 words, emojis welcome\n"
    "Language: {language}"
)


def _event_summary(event):
    return {
        "title": event.title,
        "time": format_event_time(event.event_time),
        "location": event.location or "",
        "emoji": event.emoji or DEFAULT_EMOJI,
    }


def missed_events_job():
    """Offer to reschedule the most recent pending event that already passed."""

    def build(user, local_now):
        language = templates.normalize_language(user.language)
        today = local_now.date()
        yesterday = today - timedelta(days=1)
        missed = CalendarEvent.query.filter(
            CalendarEvent.user_id == user.id,
            CalendarEvent.status == 'pending',
            or_(
                CalendarEvent.event_date == yesterday,
                and_(
                    CalendarEvent.event_date == today,
                    CalendarEvent.event_time.isnot(None),
                    CalendarEvent.event_time < local_now.time(),
                ),
            ),
        ).order_by(
            CalendarEvent.event_date.desc(),
            CalendarEvent.event_time.desc(),
        ).limit(MISSED_EVENTS_LIMIT).all()
        if not missed:
            return None

        event = missed[0]
        when_key = "missed_yesterday" if event.event_date == yesterday else "missed_earlier"
        content = templates.render("missed_event", language, title=event.title, when=templates.render(when_key, language))

        def mark_missed():
            event.status = 'missed'
            db.session.commit()

        return BatchMessage(
            content,
            metadata={
                "type": "reschedule_suggestion",
                "missedEventId": event.id,
                "missedEventTitle": event.title,
                "originalDate": event.event_date.isoformat(),
                "originalTime": format_event_time(event.event_time),
            },
            push_title=templates.render("missed_push_title", language),
            push_body=content,
            push_data={"type": "reschedule_suggestion", "event_id": event.id},
            on_persisted=mark_missed,
        )

    return BatchJob(
        "missed_events",
        "last_reschedule_suggestion_at",
        build,
        eligible=lambda user: bool(user.auto_reschedule_enabled),
    )


def daily_overview_job(generate_text=None, plans=DAILY_OVERVIEW_PLANS, logger=None):
    """Morning summary of today's events, written by the text generator when it answers."""
    generate_text = generate_text or call_chat_text

    def build(user, local_now):
        language = templates.normalize_language(user.language)
        today = local_now.date()
        events = CalendarEvent.query.filter(
            CalendarEvent.user_id == user.id,
            CalendarEvent.event_date == today,
            CalendarEvent.status != 'cancelled',
        ).order_by(
            CalendarEvent.event_time.is_(None),
            CalendarEvent.event_time.asc(),
        ).all()
        if not events:
            return None

        summaries = [_event_summary(e) for e in events]
        lines = []
        for idx, item in enumerate(summaries, start=1):
            location = f" ({item['location']})" if item['location'] else ""
            lines.append(f"{idx}. {item['time'] or templates.render('all_day', language)} - {item['title']}{location}")
        content = generate_text(
            OVERVIEW_SYSTEM_PROMPT.format(language=language),
            "Today's events:\n" + "\n".join(lines),
            logger=logger,
        )
        if not content:
            content = templates.daily_overview_text(summaries, language)

        return BatchMessage(
            content,
            metadata={
                "type": "daily_overview",
                "eventsCount": len(events),
                "date": today.isoformat(),
                "plan": user.plan,
            },
            push_title=templates.render("overview_push_title", language),
            push_body=templates.daily_overview_push_body(len(events), language),
            push_data={"type": "daily_overview", "date": today.isoformat()},
        )

    return BatchJob(
        "daily_overview",
        "last_daily_overview_at",
        build,
        eligible=lambda user: user.daily_overview_enabled is not False and (user.plan or 'free') in plans,
        target_hour=lambda user: DAILY_OVERVIEW_HOUR,
    )


def weekly_report_job():
    """Counts for the seven days before the report day."""

    def build(user, local_now):
        language = templates.normalize_language(user.language)
        end = local_now.date()
        start = end - timedelta(days=7)
        events = CalendarEvent.query.filter(
            CalendarEvent.user_id == user.id,
            CalendarEvent.event_date >= start,
            CalendarEvent.event_date < end,
        ).all()
        counts = {
            "total": len(events),
            "completed": sum(1 for e in events if e.status == 'completed'),
            "missed": sum(1 for e in events if e.status == 'missed'),
            "pending": sum(1 for e in events if e.status == 'pending'),
        }
        content = "{}\n\n{}".format(
            templates.render("weekly_arrival", language),
            templates.render("weekly_summary", language, **counts),
        )
        return BatchMessage(
            content,
            metadata={
                "type": "weekly_report",
                "language": language,
                "weekStart": start.isoformat(),
                "weekEnd": (end - timedelta(days=1)).isoformat(),
                "report": counts,
            },
            push_title=templates.render("weekly_push_title", language),
            push_body=templates.render("weekly_push_body", language),
            push_data={"type": "weekly_report"},
        )

    return BatchJob(
        "weekly_report",
        "last_weekly_report_at",
        build,
        eligible=lambda user: bool(user.weekly_report_enabled),
        target_hour=lambda user: user.weekly_report_hour if user.weekly_report_hour is not None else 0,
        target_weekday=lambda user: user.weekly_report_day if user.weekly_report_day is not None else 0,
    )


def weather_forecast_job(fetch_forecast=None):
    """Morning forecast for users who shared a location."""
    fetch_forecast = fetch_forecast or get_weather_forecast

    def build(user, local_now):
        language = templates.normalize_language(user.language)
        forecast = fetch_forecast(user.latitude, user.longitude, local_now.tzinfo.zone)
        if not forecast:
            # Raised so the sweep counts it and tomorrow's stamp stays unset
            raise RuntimeError("Weather forecast unavailable")
        forecast = dict(forecast, city=user.city or templates.render("your_city", language))
        return BatchMessage(
            templates.render("weather_arrival", language),
            metadata={"type": "weather_forecast", "language": language, "weatherData": forecast},
            push_title=templates.render("weather_push_title", language),
            push_body=templates.render(
                "weather_push_body",
                language,
                city=forecast["city"],
                temperature=forecast.get("temperature"),
                min=forecast.get("temperatureMin"),
                max=forecast.get("temperatureMax"),
            ),
            push_data={"type": "weather_forecast"},
        )

    return BatchJob(
        "weather_forecast",
        "last_weather_forecast_at",
        build,
        eligible=lambda user: bool(user.weather_forecast_enabled) and user.latitude is not None and user.longitude is not None,
        target_hour=lambda user: user.weather_forecast_hour if user.weather_forecast_hour is not None else 7,
    )


JOB_FACTORIES = {
    'missed-events': missed_events_job,
    'daily-overview': daily_overview_job,
    'weekly-report': weekly_report_job,
    'weather-forecast': weather_forecast_job,
}


def run_job(name, now=None, settings=None, default_tz="UTC", logger=None, **collaborators):
    """Build the named job and sweep every user once."""
    logger = logger or logging.getLogger(__name__)
    factory = JOB_FACTORIES[name]
    if name == 'daily-overview':
        collaborators.setdefault('logger', logger)
    job = factory(**collaborators)

    def push_sender(user_id, title, body, data):
        return send_push_to_user(user_id, title, body, data, settings=settings, logger=logger)

    users = User.query.all()
    return run_batch(job, users, now=now, push_sender=push_sender, default_tz=default_tz, logger=logger)
