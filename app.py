import os
from datetime import datetime, timedelta

from dotenv import load_dotenv
from flask import Flask, request, jsonify, session

load_dotenv()

from models import db, utcnow, User, CalendarEvent, DeviceRegistration, ChatMessage
from apscheduler.schedulers.background import BackgroundScheduler
from backend.alert_scheduler import AlertScheduler, select_backend
from backend.alert_sweep import check_upcoming_alerts, deliver_call_alert
from backend.batch_notifier import user_timezone
from backend.cron_jobs import JOB_FACTORIES, run_job
from backend.push_config import PushSettings
from services import call_alert_routes, cron_routes, push_routes

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///call_alerts.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['CRON_SECRET'] = os.environ.get('CRON_SECRET')
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'UTC')

# Push provider secrets; PushSettings.from_mapping reads them back out of app.config
for _key in (
    'APNS_TEAM_ID',
    'APNS_KEY_ID',
    'APNS_PRIVATE_KEY',
    'APNS_BUNDLE_ID',
    'APNS_HOST',
    'FIREBASE_SERVICE_ACCOUNT_KEY',
    'FCM_CHANNEL_ID',
    'PUSH_TIMEOUT_SECONDS',
):
    app.config[_key] = os.environ.get(_key)

db.init_app(app)
scheduler = None
call_alert_backend = None
# Host local-notification facility (is_available/schedule/cancel); None on a plain server
call_alert_facility = None

UPCOMING_ALERTS_INTERVAL_MINUTES = 5


def get_current_user():
    """Resolve the current user from a shared API key + user id header, else fall back to session."""
    # Header-based auth for service callers
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id and api_key == shared_key:
        user = db.session.get(User, api_user_id)
        if user:
            return user

    # Session-based auth for browser users
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def cron_authorized():
    secret = app.config.get('CRON_SECRET')
    return bool(secret) and request.headers.get('X-Cron-Secret') == secret


def push_settings():
    return PushSettings.from_mapping(app.config)


with app.app_context():
    db.create_all()


def _get_scheduler():
    """The process scheduler; created lazily (not started) so alerts can be queued before startup."""
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(timezone=app.config.get('DEFAULT_TIMEZONE', 'UTC'))
    return scheduler


def _fire_call_alert(payload):
    """Timer fallback fire: ring and push the event owner from this process."""
    with app.app_context():
        try:
            event_id = (payload.get('extra') or {}).get('eventId')
            event = db.session.get(CalendarEvent, event_id) if event_id else None
            if not event or event.status != 'pending' or not event.call_alert_enabled:
                app.logger.info("Call alert for event %s no longer applies, skipping", event_id)
                return
            # The upcoming-alert sweep may have got there first; a snooze re-arms it
            if event.call_alert_sent_at and event.call_alert_outcome == 'sent':
                app.logger.info("Call alert for event %s already sent, skipping", event_id)
                return
            user = db.session.get(User, event.user_id)
            if not user or user.call_enabled is False:
                return
            deliver_call_alert(event, user, settings=push_settings(), logger=app.logger)
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Error firing call alert: {e}")


def _get_call_alert_backend():
    global call_alert_backend
    if call_alert_backend is None:
        call_alert_backend = select_backend(
            facility=call_alert_facility,
            scheduler=_get_scheduler(),
            callback=_fire_call_alert,
            logger=app.logger,
        )
    return call_alert_backend


def alert_scheduler_for(user):
    tz = user_timezone(user, app.config['DEFAULT_TIMEZONE'], logger=app.logger)
    return AlertScheduler(_get_call_alert_backend(), tz=tz, logger=app.logger)


def _run_sweep(job):
    with app.app_context():
        try:
            if job == cron_routes.UPCOMING_ALERTS_JOB:
                check_upcoming_alerts(
                    settings=push_settings(),
                    logger=app.logger,
                    default_tz=app.config['DEFAULT_TIMEZONE'],
                )
            else:
                run_job(
                    job,
                    settings=push_settings(),
                    default_tz=app.config['DEFAULT_TIMEZONE'],
                    logger=app.logger,
                )
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Error in sweep {job}: {e}")


def _schedule_existing_call_alerts():
    """Re-register every still-pending call alert; timer registrations die with the process."""
    with app.app_context():
        try:
            yesterday = datetime.now(user_timezone(None, app.config['DEFAULT_TIMEZONE'])).date() - timedelta(days=1)
            events = CalendarEvent.query.filter(
                CalendarEvent.call_alert_enabled.is_(True),
                CalendarEvent.status == 'pending',
                CalendarEvent.event_date >= yesterday,
            ).all()

            scheduled_count = 0
            for event in events:
                user = db.session.get(User, event.user_id)
                if not user:
                    continue
                result = alert_scheduler_for(user).schedule(event)
                if result.scheduled:
                    scheduled_count += 1
            app.logger.info("Re-registered %s pending call alerts", scheduled_count)
        except Exception as e:
            app.logger.error(f"Error in _schedule_existing_call_alerts: {e}")


_jobs_bootstrapped = False


def _start_scheduler():
    """Start the background scheduler hosting timer alerts and, optionally, the sweeps."""
    sched = _get_scheduler()
    if sched.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    if os.environ.get('ENABLE_CRON_JOBS', '1') == '1':
        sched.add_job(
            _run_sweep,
            'cron',
            minute=f'*/{UPCOMING_ALERTS_INTERVAL_MINUTES}',
            args=[cron_routes.UPCOMING_ALERTS_JOB],
            id='cron_upcoming_alerts',
            replace_existing=True
        )
        # Per-user local hour gates delivery, so every batch job runs hourly
        for job in JOB_FACTORIES:
            sched.add_job(
                _run_sweep,
                'cron',
                hour='*',
                minute=0,
                args=[job],
                id=f'cron_{job}',
                replace_existing=True
            )
    sched.start()

    # Schedule existing call alerts on startup
    _schedule_existing_call_alerts()


@app.before_request
def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped or os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT', '1') != '1':
        return
    _start_scheduler()
    _jobs_bootstrapped = bool(scheduler and scheduler.running)


# Start scheduler on process startup (not request-dependent).
# Can be disabled for tooling/tests that only need app context.
if os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT', '1') == '1':
    try:
        _start_scheduler()
        _jobs_bootstrapped = bool(scheduler and scheduler.running)
    except Exception as e:
        app.logger.error(f"Error starting scheduler on startup: {e}")


# Devices and push
app.add_url_rule('/api/devices', 'register_device', push_routes.api_register_device, methods=['POST'])
app.add_url_rule('/api/devices', 'list_devices', push_routes.api_list_devices, methods=['GET'])
app.add_url_rule('/api/devices/<platform>', 'delete_device', push_routes.api_delete_device, methods=['DELETE'])
app.add_url_rule('/api/push/test', 'push_test', push_routes.api_push_test, methods=['POST'])
app.add_url_rule('/api/push/send', 'push_send', push_routes.api_push_send, methods=['POST'])
app.add_url_rule('/api/push/voip', 'push_voip', push_routes.api_push_voip, methods=['POST'])

# Call alerts
app.add_url_rule('/api/events/<event_id>/call-alert', 'schedule_call_alert', call_alert_routes.schedule_call_alert, methods=['POST'])
app.add_url_rule('/api/events/<event_id>/call-alert', 'cancel_call_alert', call_alert_routes.cancel_call_alert, methods=['DELETE'])
app.add_url_rule('/api/events/<event_id>/call-alert/snooze', 'snooze_call_alert', call_alert_routes.snooze_call_alert, methods=['POST'])
app.add_url_rule('/api/events/<event_id>/call-outcome', 'record_call_outcome', call_alert_routes.record_call_outcome, methods=['POST'])
app.add_url_rule('/api/call-alerts/pending', 'pending_call_alerts', call_alert_routes.get_pending_call_alerts, methods=['GET'])

# Sweeps
app.add_url_rule('/api/cron/<job>', 'run_cron_job', cron_routes.run_cron_job, methods=['POST'])


@app.route('/api/messages')
def list_messages():
    """Chat log entries posted by the sweeps, newest first."""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    messages = ChatMessage.query.filter_by(user_id=user.id).order_by(ChatMessage.created_at.desc()).limit(50).all()
    return jsonify([m.to_dict() for m in messages])


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
