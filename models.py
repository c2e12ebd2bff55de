from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

db = SQLAlchemy()

RECURRENCE_TYPES = ('NONE', 'DAILY', 'WEEKLY', 'MONTHLY', 'YEARLY', 'WEEKDAYS', 'WEEKENDS')

# Constraint names are matched when telling a benign materialization race
# apart from other integrity errors.
DAY_UNIQUE_CONSTRAINT = 'uq_day_user_date'
MATERIALIZED_BLOCK_CONSTRAINT = 'uq_time_block_day_template'


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    password_hash = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Cached streak state; written only by backend.completion
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    last_completed_date = db.Column(db.Date, nullable=True)

    days = db.relationship('Day', backref='owner', lazy=True, cascade="all, delete-orphan")
    templates = db.relationship('TimeBlockTemplate', backref='owner', lazy=True, cascade="all, delete-orphan")
    events = db.relationship('Event', backref='owner', lazy=True, cascade="all, delete-orphan")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'last_completed_date': self.last_completed_date.isoformat() if self.last_completed_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Day(db.Model):
    """
    One calendar date for one user. is_completed is a cache of the time block
    flags and is recomputed by backend.completion.
    """
    __table_args__ = (
        db.UniqueConstraint('user_id', 'date', name=DAY_UNIQUE_CONSTRAINT),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    next_time_block_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    time_blocks = db.relationship(
        'TimeBlock',
        backref='day',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TimeBlock.order"
    )

    def to_dict(self, include_blocks=True):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'date': self.date.isoformat() if self.date else None,
            'is_completed': self.is_completed,
            'next_time_block_order': self.next_time_block_order,
        }
        if include_blocks:
            data['time_blocks'] = [tb.to_dict() for tb in self.time_blocks]
        return data


class TimeBlock(db.Model):
    __table_args__ = (
        db.UniqueConstraint('day_id', 'order', name='uq_time_block_day_order'),
        db.UniqueConstraint('day_id', 'template_id', name=MATERIALIZED_BLOCK_CONSTRAINT),
    )

    id = db.Column(db.Integer, primary_key=True)
    day_id = db.Column(db.Integer, db.ForeignKey('day.id', ondelete='CASCADE'), nullable=False)
    # Set only when materialized from a template
    template_id = db.Column(
        db.Integer,
        db.ForeignKey('time_block_template.id', ondelete='SET NULL'),
        nullable=True,
        index=True
    )
    name = db.Column(db.String(200), nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # HH:MM
    end_time = db.Column(db.String(5), nullable=False)
    color = db.Column(db.String(7), nullable=True)
    order = db.Column(db.Integer, nullable=False)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    next_note_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    notes = db.relationship(
        'Note',
        backref='time_block',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Note.order"
    )

    def to_dict(self):
        return {
            'id': self.id,
            'day_id': self.day_id,
            'template_id': self.template_id,
            'name': self.name,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'color': self.color,
            'order': self.order,
            'is_completed': self.is_completed,
            'notes': [n.to_dict() for n in self.notes],
        }


class Note(db.Model):
    """Plain-text note attached to a time block."""
    __table_args__ = (
        db.UniqueConstraint('time_block_id', 'order', name='uq_note_block_order'),
    )

    id = db.Column(db.Integer, primary_key=True)
    time_block_id = db.Column(db.Integer, db.ForeignKey('time_block.id', ondelete='CASCADE'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    order = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'time_block_id': self.time_block_id,
            'content': self.content,
            'order': self.order,
        }


class TimeBlockTemplate(db.Model):
    """
    Recurring time block definition. days_of_week holds ISO weekdays
    (Monday=1..Sunday=7) as a comma separated string.
    """
    __table_args__ = (
        db.Index('ix_template_user_active', 'user_id', 'is_active'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    color = db.Column(db.String(7), nullable=True)
    days_of_week = db.Column(db.String(20), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    active_until = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    notes = db.relationship(
        'TemplateNote',
        backref='template',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TemplateNote.order"
    )
    exclusions = db.relationship(
        'MaterializationExclusion',
        backref='template',
        lazy=True,
        cascade="all, delete-orphan"
    )
    # No delete cascade: materialized blocks outlive their template with template_id nulled
    time_blocks = db.relationship('TimeBlock', backref='template', lazy=True)

    def weekdays(self):
        days = []
        for val in str(self.days_of_week or '').split(','):
            try:
                days.append(int(val))
            except (TypeError, ValueError):
                continue
        return sorted(set(days))

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'color': self.color,
            'days_of_week': self.weekdays(),
            'is_active': self.is_active,
            'active_until': self.active_until.isoformat() if self.active_until else None,
            'notes': [n.to_dict() for n in self.notes],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class TemplateNote(db.Model):
    __table_args__ = (
        db.UniqueConstraint('template_id', 'order', name='uq_template_note_order'),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('time_block_template.id', ondelete='CASCADE'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    order = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {'id': self.id, 'content': self.content, 'order': self.order}


class MaterializationExclusion(db.Model):
    """Tombstone: do not materialize template_id on date again."""
    __table_args__ = (
        db.UniqueConstraint('template_id', 'date', name='uq_exclusion_template_date'),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey('time_block_template.id', ondelete='CASCADE'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Event(db.Model):
    """Calendar event; recurring events are expanded on read, never stored per occurrence."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=False)
    color = db.Column(db.String(7), nullable=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurrence_type = db.Column(db.String(10), nullable=False, default='NONE')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'date': self.date.isoformat() if self.date else None,
            'color': self.color,
            'is_recurring': self.is_recurring,
            'recurrence_type': self.recurrence_type,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
