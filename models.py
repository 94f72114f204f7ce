import uuid
from datetime import datetime, date

import pytz
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _new_id():
    return str(uuid.uuid4())


def utcnow():
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


class User(db.Model):
    """Profile row: timezone, language, plan and per-feature notification flags."""
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    display_name = db.Column(db.String(120), nullable=True)
    timezone = db.Column(db.String(64), nullable=True)  # IANA name; None -> DEFAULT_TIMEZONE
    language = db.Column(db.String(10), default='pt-BR')
    plan = db.Column(db.String(20), default='free')  # free | plus | super

    push_enabled = db.Column(db.Boolean, default=True)
    call_enabled = db.Column(db.Boolean, default=True)
    critical_alerts_enabled = db.Column(db.Boolean, default=True)
    auto_reschedule_enabled = db.Column(db.Boolean, default=False)
    daily_overview_enabled = db.Column(db.Boolean, default=True)
    weekly_report_enabled = db.Column(db.Boolean, default=False)
    weekly_report_day = db.Column(db.Integer, default=0)  # 0 = Sunday
    weekly_report_hour = db.Column(db.Integer, default=0)
    weather_forecast_enabled = db.Column(db.Boolean, default=False)
    weather_forecast_hour = db.Column(db.Integer, default=7)

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    city = db.Column(db.String(120), nullable=True)

    last_daily_overview_at = db.Column(db.DateTime, nullable=True)
    last_weekly_report_at = db.Column(db.DateTime, nullable=True)
    last_weather_forecast_at = db.Column(db.DateTime, nullable=True)
    last_reschedule_suggestion_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    events = db.relationship('CalendarEvent', backref='owner', lazy=True, cascade="all, delete-orphan")
    devices = db.relationship('DeviceRegistration', backref='user', lazy=True, cascade="all, delete-orphan")
    messages = db.relationship('ChatMessage', backref='user', lazy=True, cascade="all, delete-orphan")


class CalendarEvent(db.Model):
    """
    Calendar entry that can carry a "call me" alert.
    event_date/event_time are naive and interpreted in the owner's timezone;
    a missing event_time means all-day.
    """
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    event_date = db.Column(db.Date, nullable=False, default=date.today)
    event_time = db.Column(db.Time, nullable=True)
    location = db.Column(db.String(200), nullable=True)
    emoji = db.Column(db.String(16), nullable=True)
    status = db.Column(db.String(20), default='pending')  # pending | completed | cancelled | missed

    call_alert_enabled = db.Column(db.Boolean, default=False)
    call_alert_scheduled_at = db.Column(db.DateTime, nullable=True)
    call_alert_sent_at = db.Column(db.DateTime, nullable=True)
    call_alert_attempts = db.Column(db.Integer, default=0)
    call_alert_outcome = db.Column(db.String(20), nullable=True)  # scheduled | sent | answered | declined | snoozed | missed
    call_alert_answered_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'event_date': self.event_date.isoformat() if self.event_date else None,
            'event_time': self.event_time.strftime('%H:%M') if self.event_time else None,
            'location': self.location,
            'emoji': self.emoji,
            'status': self.status,
            'call_alert_enabled': self.call_alert_enabled,
            'call_alert_scheduled_at': self.call_alert_scheduled_at.isoformat() if self.call_alert_scheduled_at else None,
            'call_alert_sent_at': self.call_alert_sent_at.isoformat() if self.call_alert_sent_at else None,
            'call_alert_attempts': self.call_alert_attempts or 0,
            'call_alert_outcome': self.call_alert_outcome,
        }


class DeviceRegistration(db.Model):
    """Push destination for one (user, platform); re-registering overwrites the token."""
    __table_args__ = (db.UniqueConstraint('user_id', 'platform', name='uq_device_user_platform'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False)
    platform = db.Column(db.String(10), nullable=False)  # ios | android
    token = db.Column(db.String(512), nullable=True)
    voip_token = db.Column(db.String(512), nullable=True)  # iOS PushKit token, optional
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'platform': self.platform,
            'has_token': bool(self.token),
            'has_voip_token': bool(self.voip_token),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class ChatMessage(db.Model):
    """Append-only chat log entry; sweeps post assistant messages here."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='assistant')
    content = db.Column(db.Text, nullable=False)
    meta = db.Column('metadata', db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'role': self.role,
            'content': self.content,
            'metadata': self.meta or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
