from datetime import date, datetime, time

import pytz

from backend.batch_notifier import BatchJob, BatchMessage, already_sent_today, run_batch, sunday_based_weekday
from backend.cron_jobs import daily_overview_job, missed_events_job, weather_forecast_job, weekly_report_job
from backend.delivery import DeliveryResult
from models import db, CalendarEvent, ChatMessage, User

# 10:00 UTC: 07:00 in Sao Paulo, 19:00 in Tokyo
NOW = datetime(2026, 3, 10, 10, 0, tzinfo=pytz.UTC)


class PushRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, user_id, title, body, data):
        self.calls.append((user_id, title, body, data))
        return [DeliveryResult('sent')]


def _user(**fields):
    user = User(**fields)
    db.session.add(user)
    db.session.commit()
    return user


def _event(user, **fields):
    fields.setdefault('title', 'Dentist')
    fields.setdefault('event_date', date(2026, 3, 10))
    event = CalendarEvent(user_id=user.id, **fields)
    db.session.add(event)
    db.session.commit()
    return event


def test_already_sent_compares_local_days():
    tz = pytz.timezone('America/Sao_Paulo')
    local_now = NOW.astimezone(tz)
    # 02:00 UTC on the 10th is still the 9th in Sao Paulo
    assert not already_sent_today(datetime(2026, 3, 10, 2, 0), tz, local_now)
    assert already_sent_today(datetime(2026, 3, 10, 4, 0), tz, local_now)
    assert not already_sent_today(None, tz, local_now)


def test_sunday_based_weekday():
    assert sunday_based_weekday(date(2026, 3, 8)) == 0
    assert sunday_based_weekday(date(2026, 3, 10)) == 2


def test_daily_overview_respects_local_hour_and_runs_once(app_ctx):
    sp = _user(display_name='Ana', timezone='America/Sao_Paulo', plan='plus', language='en-US')
    tokyo = _user(display_name='Ken', timezone='Asia/Tokyo', plan='super')
    _event(sp, event_time=time(9, 30))
    _event(tokyo, event_date=date(2026, 3, 10))
    push = PushRecorder()
    job = daily_overview_job(generate_text=lambda *args, **kwargs: None)

    stats = run_batch(job, User.query.all(), now=NOW, push_sender=push)

    assert stats['processed'] == 1
    assert stats['skipped_hour'] == 1
    assert stats['pushes_sent'] == 1
    assert push.calls[0][0] == sp.id
    assert push.calls[0][2] == 'You have 1 appointment today. Check your schedule!'
    message = ChatMessage.query.filter_by(user_id=sp.id).one()
    assert 'Good morning' in message.content
    assert '09:30 - Dentist' in message.content
    assert message.meta['type'] == 'daily_overview'
    assert db.session.get(User, sp.id).last_daily_overview_at == NOW.replace(tzinfo=None)

    again = run_batch(job, User.query.all(), now=NOW, push_sender=push)
    assert again['processed'] == 0
    assert again['skipped_already_sent'] == 1
    assert ChatMessage.query.count() == 1


def test_daily_overview_uses_generated_text_and_skips_free_plan(app_ctx):
    paid = _user(timezone='America/Sao_Paulo', plan='plus')
    free = _user(timezone='America/Sao_Paulo', plan='free')
    _event(paid)
    _event(free)
    job = daily_overview_job(generate_text=lambda system, content, **kwargs: 'Bom dia! ' + content.splitlines()[1])

    stats = run_batch(job, User.query.all(), now=NOW, push_sender=PushRecorder())

    assert stats['skipped_ineligible'] == 1
    assert ChatMessage.query.filter_by(user_id=paid.id).one().content == 'Bom dia! 1. Dia inteiro - Dentist'


def test_daily_overview_without_events_sends_nothing(app_ctx):
    _user(timezone='America/Sao_Paulo', plan='plus')
    stats = run_batch(daily_overview_job(generate_text=lambda *a, **k: None), User.query.all(),
                      now=NOW, push_sender=PushRecorder())
    assert stats['skipped_no_content'] == 1
    assert ChatMessage.query.count() == 0


def test_one_failing_user_does_not_stop_the_sweep(app_ctx):
    first = _user(display_name='broken')
    second = _user(display_name='fine')

    def build(user, local_now):
        if user.display_name == 'broken':
            raise RuntimeError("template exploded")
        return BatchMessage('hello')

    job = BatchJob('greeting', 'last_daily_overview_at', build)
    stats = run_batch(job, [first, second], now=NOW, push_sender=PushRecorder())

    assert stats['errors'] == 1
    assert stats['processed'] == 1
    assert stats['error_details'][0]['user_id'] == first.id
    assert db.session.get(User, first.id).last_daily_overview_at is None
    assert db.session.get(User, second.id).last_daily_overview_at is not None


def test_missed_event_suggestion_marks_event_missed(app_ctx):
    user = _user(timezone='America/Sao_Paulo', auto_reschedule_enabled=True, language='en-US')
    skipped = _user(timezone='America/Sao_Paulo', auto_reschedule_enabled=False)
    event = _event(user, title='Gym', event_date=date(2026, 3, 9), event_time=time(18, 0))
    _event(skipped, event_date=date(2026, 3, 9))
    push = PushRecorder()

    stats = run_batch(missed_events_job(), User.query.all(), now=NOW, push_sender=push)

    assert stats['processed'] == 1
    assert stats['skipped_ineligible'] == 1
    assert db.session.get(CalendarEvent, event.id).status == 'missed'
    message = ChatMessage.query.filter_by(user_id=user.id).one()
    assert '"Gym"' in message.content and 'yesterday' in message.content
    assert message.meta['missedEventId'] == event.id
    assert push.calls[0][3]['type'] == 'reschedule_suggestion'


def test_weekly_report_counts_previous_week(app_ctx):
    # Tuesday 07:00 in Sao Paulo
    user = _user(timezone='America/Sao_Paulo', weekly_report_enabled=True,
                 weekly_report_day=2, weekly_report_hour=7, language='en-US')
    _event(user, event_date=date(2026, 3, 4), status='completed')
    _event(user, event_date=date(2026, 3, 6), status='missed')
    _event(user, event_date=date(2026, 3, 9), status='pending')
    _event(user, event_date=date(2026, 3, 10), status='pending')

    stats = run_batch(weekly_report_job(), User.query.all(), now=NOW, push_sender=PushRecorder())

    assert stats['processed'] == 1
    meta = ChatMessage.query.one().meta
    assert meta['report'] == {'total': 3, 'completed': 1, 'missed': 1, 'pending': 1}
    assert meta['weekStart'] == '2026-03-03'


def test_weekly_report_waits_for_its_weekday(app_ctx):
    _user(timezone='America/Sao_Paulo', weekly_report_enabled=True, weekly_report_day=0, weekly_report_hour=7)
    stats = run_batch(weekly_report_job(), User.query.all(), now=NOW, push_sender=PushRecorder())
    assert stats['skipped_hour'] == 1


def test_weather_forecast_needs_location_and_forecast(app_ctx):
    located = _user(timezone='America/Sao_Paulo', weather_forecast_enabled=True, weather_forecast_hour=7,
                    latitude=-23.55, longitude=-46.63, city='São Paulo', language='en-US')
    _user(timezone='America/Sao_Paulo', weather_forecast_enabled=True, weather_forecast_hour=7)
    requested = []

    def fetch(lat, lon, tz_name):
        requested.append((lat, lon, tz_name))
        return {'temperature': 24, 'temperatureMin': 19, 'temperatureMax': 29}

    push = PushRecorder()
    stats = run_batch(weather_forecast_job(fetch_forecast=fetch), User.query.all(), now=NOW, push_sender=push)

    assert stats['processed'] == 1
    assert stats['skipped_ineligible'] == 1
    assert requested == [(-23.55, -46.63, 'America/Sao_Paulo')]
    assert push.calls[0][2] == 'São Paulo: 24°C now, low 19°C and high 29°C.'
    assert db.session.get(User, located.id).last_weather_forecast_at is not None


def test_weather_outage_is_an_error_and_retries_later(app_ctx):
    user = _user(timezone='America/Sao_Paulo', weather_forecast_enabled=True, weather_forecast_hour=7,
                 latitude=1.0, longitude=2.0)
    stats = run_batch(weather_forecast_job(fetch_forecast=lambda *args: None), User.query.all(),
                      now=NOW, push_sender=PushRecorder())
    assert stats['errors'] == 1
    assert db.session.get(User, user.id).last_weather_forecast_at is None
