"""Externally triggered sweeps (hosted cron hits these instead of the in-process scheduler)."""
from backend.alert_sweep import check_upcoming_alerts
from backend.cron_jobs import JOB_FACTORIES, run_job

UPCOMING_ALERTS_JOB = 'upcoming-alerts'


def run_cron_job(job):
    import app as a

    app = a.app
    cron_authorized = a.cron_authorized
    jsonify = a.jsonify
    push_settings = a.push_settings

    if not cron_authorized():
        return jsonify({'error': 'Unauthorized'}), 401
    if job != UPCOMING_ALERTS_JOB and job not in JOB_FACTORIES:
        return jsonify({'error': f'Unknown job: {job}'}), 404

    default_tz = app.config['DEFAULT_TIMEZONE']
    try:
        if job == UPCOMING_ALERTS_JOB:
            stats = check_upcoming_alerts(settings=push_settings(), logger=app.logger, default_tz=default_tz)
        else:
            stats = run_job(job, settings=push_settings(), default_tz=default_tz, logger=app.logger)
    except Exception as e:
        app.logger.exception("Cron job %s failed", job)
        return jsonify({'error': str(e)}), 500
    return jsonify({'success': True, 'stats': stats})
