"""Calendar event routes. Recurring events are expanded on read."""
from flask import jsonify, request
from sqlalchemy import and_, or_

from backend.errors import ValidationError
from backend.lookups import get_owned_event
from backend.recurrence import NONE, expand_events, normalize_kind
from models import Event, db
from services.auth_service import get_current_user
from services.validation_service import (
    parse_bool,
    parse_color,
    parse_date_range,
    parse_name,
    require_day_value,
)


def _validate_recurrence(is_recurring, recurrence_type):
    if is_recurring and recurrence_type == NONE:
        raise ValidationError('Recurring events must have a recurrence type other than NONE')
    if not is_recurring and recurrence_type != NONE:
        raise ValidationError('Non-recurring events must have recurrence type NONE')


def _parse_kind(raw):
    kind = normalize_kind(raw)
    if kind is None:
        raise ValidationError('Invalid recurrence_type')
    return kind


def events_collection():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        events = Event.query.filter_by(user_id=user.id).order_by(Event.date.asc(), Event.id.asc()).all()
        return jsonify([e.to_dict() for e in events])

    data = request.get_json(silent=True) or {}
    is_recurring = parse_bool(data.get('is_recurring'))
    recurrence_type = _parse_kind(data.get('recurrence_type'))
    _validate_recurrence(is_recurring, recurrence_type)

    event = Event(
        user_id=user.id,
        title=parse_name(data.get('title'), field='title'),
        date=require_day_value(data.get('date')),
        color=parse_color(data.get('color')),
        is_recurring=is_recurring,
        recurrence_type=recurrence_type,
    )
    db.session.add(event)
    db.session.commit()
    return jsonify(event.to_dict()), 201


def event_calendar():
    """Occurrences of every event inside [start, end], sorted by occurrence date."""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    start_day, end_day = parse_date_range(request.args.get('start'), request.args.get('end'))

    # One-off events must fall in the window; recurring ones only need to start by its end
    events = Event.query.filter(
        Event.user_id == user.id,
        or_(
            and_(Event.is_recurring.is_(False), Event.date >= start_day, Event.date <= end_day),
            and_(Event.is_recurring.is_(True), Event.date <= end_day)
        )
    ).all()

    payload = []
    for event, occ in expand_events(events, start_day, end_day):
        data = event.to_dict()
        data['occurrence_date'] = occ.occurrence_date.isoformat()
        data['is_original'] = occ.is_original
        data['is_occurrence'] = not occ.is_original
        payload.append(data)
    return jsonify(payload)


def event_detail(event_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    event = get_owned_event(event_id, user.id)

    if request.method == 'DELETE':
        db.session.delete(event)
        db.session.commit()
        return '', 204

    if request.method == 'PATCH':
        data = request.get_json(silent=True) or {}
        is_recurring = parse_bool(data['is_recurring']) if 'is_recurring' in data else event.is_recurring
        recurrence_type = _parse_kind(data['recurrence_type']) if 'recurrence_type' in data else event.recurrence_type
        _validate_recurrence(is_recurring, recurrence_type)

        if 'title' in data:
            event.title = parse_name(data.get('title'), field='title')
        if 'date' in data:
            event.date = require_day_value(data.get('date'))
        if 'color' in data:
            event.color = parse_color(data.get('color'))
        event.is_recurring = is_recurring
        event.recurrence_type = recurrence_type
        db.session.commit()

    return jsonify(event.to_dict())
