"""Recurring time block template routes."""
from flask import jsonify, request

from backend.errors import ValidationError
from backend.lookups import get_owned_template
from backend.materializer import create_template, deactivate_template, delete_template, update_template
from models import TimeBlockTemplate
from services.auth_service import get_current_user
from services.validation_service import (
    days_of_week_to_string,
    ensure_time_order,
    parse_bool,
    parse_color,
    parse_days_of_week,
    parse_hhmm,
    parse_name,
    require_day_value,
)


def _parse_template_notes(raw):
    """Validate [{'content', 'order'}] and return contents sorted by order."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('notes must be a list')
    parsed = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError('each note needs content and order')
        content = entry.get('content')
        if not isinstance(content, str) or not content.strip():
            raise ValidationError('note content is required')
        try:
            order = int(entry.get('order'))
        except (TypeError, ValueError):
            raise ValidationError('note order must be an integer')
        if order < 0:
            raise ValidationError('note order must be zero or greater')
        parsed.append((order, content.strip()))
    if len({order for order, _ in parsed}) != len(parsed):
        raise ValidationError('note orders must be unique')
    return [content for _, content in sorted(parsed)]


def templates_collection():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        templates = TimeBlockTemplate.query.filter_by(user_id=user.id).order_by(
            TimeBlockTemplate.created_at.desc(),
            TimeBlockTemplate.id.desc()
        ).all()
        return jsonify([t.to_dict() for t in templates])

    data = request.get_json(silent=True) or {}
    name = parse_name(data.get('name'))
    start_time = parse_hhmm(data.get('start_time'), 'start_time')
    end_time = parse_hhmm(data.get('end_time'), 'end_time')
    ensure_time_order(start_time, end_time)
    days = parse_days_of_week(data.get('days_of_week'))
    note_contents = _parse_template_notes(data.get('notes'))

    template = create_template(
        user.id,
        name,
        start_time,
        end_time,
        days_of_week_to_string(days),
        color=parse_color(data.get('color')),
        notes=note_contents,
    )
    return jsonify(template.to_dict()), 201


def template_detail(template_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    template = get_owned_template(template_id, user.id)

    if request.method == 'DELETE':
        delete_template(template)
        return '', 204

    if request.method == 'PATCH':
        data = request.get_json(silent=True) or {}
        start_time = parse_hhmm(data['start_time'], 'start_time') if 'start_time' in data else template.start_time
        end_time = parse_hhmm(data['end_time'], 'end_time') if 'end_time' in data else template.end_time
        ensure_time_order(start_time, end_time)
        fields = {'start_time': start_time, 'end_time': end_time}
        if 'name' in data:
            fields['name'] = parse_name(data.get('name'))
        if 'color' in data:
            fields['color'] = parse_color(data.get('color'))
        if 'days_of_week' in data:
            fields['days_of_week'] = days_of_week_to_string(parse_days_of_week(data.get('days_of_week')))
        template = update_template(template, **fields)

    return jsonify(template.to_dict())


def deactivate(template_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    template = get_owned_template(template_id, user.id)
    data = request.get_json(silent=True) or {}
    active_until = require_day_value(data['active_until'], 'active_until') if data.get('active_until') else None
    template = deactivate_template(
        template,
        active_until=active_until,
        delete_future_occurrences=parse_bool(data.get('delete_future_occurrences')),
    )
    return jsonify(template.to_dict())
