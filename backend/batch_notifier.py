"""
Single-pass per-user notification sweeps.

Every sweep has the same shape: pick eligible users, check that it is the
right local moment for each of them, refuse to send twice in the same local
day, build the message, store it in the chat log, push it, and only then
stamp the job's "last sent at" field. A failing user is counted and logged;
the sweep carries on with the next one.
"""
import logging
from datetime import datetime

import pytz

from backend.push_dispatcher import send_push_to_user
from models import db, ChatMessage, utcnow


class BatchMessage:
    def __init__(self, content, metadata=None, push_title=None, push_body=None, push_data=None, on_persisted=None):
        self.content = content
        self.metadata = metadata or {}
        self.push_title = push_title
        self.push_body = push_body
        self.push_data = push_data or {}
        self.on_persisted = on_persisted


class BatchJob:
    """
    Parameters of one sweep.

    ``target_hour`` / ``target_weekday`` are callables taking the user and
    returning the local hour (0-23) / weekday (0 = Sunday) to match, or None
    to match any. ``build_message(user, local_now)`` returns a BatchMessage,
    or None when there is nothing to say to this user today.
    """

    def __init__(self, name, last_sent_field, build_message, eligible=None, target_hour=None, target_weekday=None):
        self.name = name
        self.last_sent_field = last_sent_field
        self.build_message = build_message
        self.eligible = eligible
        self.target_hour = target_hour
        self.target_weekday = target_weekday

    def is_eligible(self, user):
        return self.eligible is None or bool(self.eligible(user))

    def is_target_moment(self, user, local_now):
        if self.target_hour is not None:
            hour = self.target_hour(user)
            if hour is not None and local_now.hour != hour:
                return False
        if self.target_weekday is not None:
            weekday = self.target_weekday(user)
            if weekday is not None and sunday_based_weekday(local_now) != weekday:
                return False
        return True


def sunday_based_weekday(value):
    return (value.weekday() + 1) % 7


def user_timezone(user, default_tz="UTC", logger=None):
    name = getattr(user, "timezone", None) or default_tz
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        if logger:
            logger.warning("Unknown timezone %s for user %s, using %s", name, getattr(user, "id", None), default_tz)
        return pytz.timezone(default_tz)


def already_sent_today(last_sent_at, tz, local_now):
    """Compare in the user's local calendar day, not the UTC day."""
    if last_sent_at is None:
        return False
    if last_sent_at.tzinfo is None:
        last_sent_at = pytz.UTC.localize(last_sent_at)
    return last_sent_at.astimezone(tz).date() == local_now.date()


def _aware_utc(now):
    if now is None:
        return datetime.now(pytz.UTC)
    if now.tzinfo is None:
        return pytz.UTC.localize(now)
    return now.astimezone(pytz.UTC)


def new_stats(name, users_total):
    return {
        'job': name,
        'users_total': users_total,
        'processed': 0,
        'errors': 0,
        'pushes_sent': 0,
        'skipped_ineligible': 0,
        'skipped_hour': 0,
        'skipped_already_sent': 0,
        'skipped_no_content': 0,
        'error_details': [],
    }


def run_batch(job, users, now=None, push_sender=None, default_tz="UTC", logger=None):
    logger = logger or logging.getLogger(__name__)
    now_utc = _aware_utc(now)
    users = list(users)
    stats = new_stats(job.name, len(users))
    if push_sender is None:
        def push_sender(user_id, title, body, data):
            return send_push_to_user(user_id, title, body, data, logger=logger)

    for user in users:
        try:
            if not job.is_eligible(user):
                stats['skipped_ineligible'] += 1
                continue
            tz = user_timezone(user, default_tz, logger=logger)
            local_now = now_utc.astimezone(tz)
            if not job.is_target_moment(user, local_now):
                stats['skipped_hour'] += 1
                continue
            if already_sent_today(getattr(user, job.last_sent_field, None), tz, local_now):
                logger.info("[%s] User %s already received today's message, skipping", job.name, user.id)
                stats['skipped_already_sent'] += 1
                continue

            message = job.build_message(user, local_now)
            if message is None:
                stats['skipped_no_content'] += 1
                continue

            db.session.add(ChatMessage(
                user_id=user.id,
                role='assistant',
                content=message.content,
                meta=dict(message.metadata, type=message.metadata.get('type', job.name)),
            ))
            db.session.commit()
            if message.on_persisted:
                message.on_persisted()

            if message.push_title:
                results = push_sender(user.id, message.push_title, message.push_body, message.push_data) or []
                if any(r.success for r in results):
                    stats['pushes_sent'] += 1

            setattr(user, job.last_sent_field, utcnow() if now is None else now_utc.replace(tzinfo=None))
            db.session.commit()
            stats['processed'] += 1
            logger.info("[%s] Sent to user %s", job.name, user.id)
        except Exception as e:
            db.session.rollback()
            stats['errors'] += 1
            stats['error_details'].append({'user_id': getattr(user, 'id', None), 'error': str(e)})
            logger.error("[%s] Error processing user %s: %s", job.name, getattr(user, 'id', None), e)
            continue

    logger.info(
        "[%s] users=%s processed=%s errors=%s pushes=%s skipped_ineligible=%s skipped_hour=%s skipped_already_sent=%s skipped_no_content=%s",
        job.name,
        stats['users_total'],
        stats['processed'],
        stats['errors'],
        stats['pushes_sent'],
        stats['skipped_ineligible'],
        stats['skipped_hour'],
        stats['skipped_already_sent'],
        stats['skipped_no_content'],
    )
    return stats
