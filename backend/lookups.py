"""Ownership-checked lookups. Anything not owned by the caller is reported as missing."""
from backend.errors import NotFoundError
from models import Day, Event, Note, TimeBlock, TimeBlockTemplate, db


def get_owned_day(day_id, user_id):
    day = Day.query.filter_by(id=day_id, user_id=user_id).first()
    if not day:
        raise NotFoundError('Day not found')
    return day


def get_owned_time_block(block_id, user_id):
    block = db.session.query(TimeBlock).join(Day, TimeBlock.day_id == Day.id).filter(
        TimeBlock.id == block_id,
        Day.user_id == user_id
    ).first()
    if not block:
        raise NotFoundError('Time block not found')
    return block


def get_owned_note(note_id, user_id):
    note = db.session.query(Note).join(TimeBlock, Note.time_block_id == TimeBlock.id).join(
        Day, TimeBlock.day_id == Day.id
    ).filter(
        Note.id == note_id,
        Day.user_id == user_id
    ).first()
    if not note:
        raise NotFoundError('Note not found')
    return note


def get_owned_template(template_id, user_id):
    template = TimeBlockTemplate.query.filter_by(id=template_id, user_id=user_id).first()
    if not template:
        raise NotFoundError('Time block template not found')
    return template


def get_owned_event(event_id, user_id):
    event = Event.query.filter_by(id=event_id, user_id=user_id).first()
    if not event:
        raise NotFoundError('Event not found')
    return event
