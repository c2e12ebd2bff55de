"""Time block routes. Every change to completion or membership runs the cascade in the same transaction."""
from flask import jsonify, request

from backend.completion import recompute_user_streak, update_completion_status
from backend.errors import ValidationError
from backend.lookups import get_owned_day, get_owned_time_block
from backend.ordering import next_block_order, reindex_time_blocks, reserve_block_order
from backend.transactions import run_in_transaction
from models import MaterializationExclusion, Note, TimeBlock, db
from services.auth_service import get_current_user
from services.validation_service import (
    ensure_time_order,
    parse_bool,
    parse_color,
    parse_hhmm,
    parse_name,
)


def list_time_blocks(day_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    day = get_owned_day(day_id, user.id)
    return jsonify([tb.to_dict() for tb in day.time_blocks])


def create_time_block():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = request.get_json(silent=True) or {}
    day = get_owned_day(data.get('day_id'), user.id)
    name = parse_name(data.get('name'))
    start_time = parse_hhmm(data.get('start_time'), 'start_time')
    end_time = parse_hhmm(data.get('end_time'), 'end_time')
    ensure_time_order(start_time, end_time)
    color = parse_color(data.get('color'))

    explicit_order = data.get('order')
    if explicit_order is not None:
        try:
            explicit_order = int(explicit_order)
        except (TypeError, ValueError):
            raise ValidationError('order must be an integer')
        if explicit_order < 0:
            raise ValidationError('order must be zero or greater')

    def _create(session):
        if explicit_order is None:
            order = next_block_order(session, day.id)
        else:
            order = explicit_order
            taken = session.query(TimeBlock.id).filter_by(day_id=day.id, order=order).first()
            if taken:
                raise ValidationError(f"A time block with order {order} already exists for this day")
            reserve_block_order(session, day.id, order)
        block = TimeBlock(
            day_id=day.id,
            name=name,
            start_time=start_time,
            end_time=end_time,
            color=color,
            order=order,
            is_completed=False,
        )
        session.add(block)
        session.flush()
        update_completion_status(day.id, tx=session)
        return block

    block = run_in_transaction(_create)
    return jsonify(block.to_dict()), 201


def _update_time_block(block, data):
    if 'name' in data:
        block.name = parse_name(data.get('name'))
    start_time = parse_hhmm(data['start_time'], 'start_time') if 'start_time' in data else block.start_time
    end_time = parse_hhmm(data['end_time'], 'end_time') if 'end_time' in data else block.end_time
    ensure_time_order(start_time, end_time)
    block.start_time = start_time
    block.end_time = end_time
    if 'color' in data:
        block.color = parse_color(data.get('color'))

    if 'is_completed' not in data:
        db.session.commit()
        return block

    def _toggle(session):
        block.is_completed = parse_bool(data.get('is_completed'))
        session.flush()
        update_completion_status(block.day_id, tx=session)
        return block

    return run_in_transaction(_toggle)


def _delete_time_block(block):
    def _delete(session):
        day_id = block.day_id
        template_id = block.template_id
        day_date = block.day.date
        user_id = block.day.user_id

        session.delete(block)
        session.flush()

        # Tombstone so the template does not refill this slot
        if template_id is not None:
            exists = session.query(MaterializationExclusion.id).filter_by(
                template_id=template_id, date=day_date
            ).first()
            if not exists:
                session.add(MaterializationExclusion(template_id=template_id, date=day_date))
                session.flush()

        if reindex_time_blocks(session, day_id):
            update_completion_status(day_id, tx=session)
        else:
            # An emptied day is no longer active
            recompute_user_streak(session, user_id)

    run_in_transaction(_delete)


def time_block_detail(block_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    block = get_owned_time_block(block_id, user.id)

    if request.method == 'DELETE':
        _delete_time_block(block)
        return '', 204

    if request.method == 'PATCH':
        data = request.get_json(silent=True) or {}
        block = _update_time_block(block, data)

    return jsonify(block.to_dict())


def reorder_time_blocks(day_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    day = get_owned_day(day_id, user.id)
    data = request.get_json(silent=True) or {}
    ordered_ids = data.get('ordered_ids')
    if not isinstance(ordered_ids, list):
        raise ValidationError('ordered_ids must be a list')
    try:
        ordered_ids = [int(i) for i in ordered_ids]
    except (TypeError, ValueError):
        raise ValidationError('ordered_ids must contain integers')

    valid_ids = {tb.id for tb in day.time_blocks}
    for block_id in ordered_ids:
        if block_id not in valid_ids:
            raise ValidationError(f"Time block {block_id} does not belong to this day")
    if len(ordered_ids) != len(valid_ids) or len(set(ordered_ids)) != len(ordered_ids):
        raise ValidationError('ordered_ids must list every time block of the day exactly once')

    run_in_transaction(lambda session: reindex_time_blocks(session, day.id, ordered_ids))
    db.session.refresh(day)
    return jsonify([tb.to_dict() for tb in day.time_blocks])


def duplicate_time_block(block_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    source = get_owned_time_block(block_id, user.id)
    data = request.get_json(silent=True) or {}
    target_day = get_owned_day(data.get('target_day_id'), user.id)

    start_time = parse_hhmm(data['start_time'], 'start_time') if data.get('start_time') else source.start_time
    end_time = parse_hhmm(data['end_time'], 'end_time') if data.get('end_time') else source.end_time
    ensure_time_order(start_time, end_time)
    include_notes = parse_bool(data.get('include_notes'), default=True)
    source_notes = list(source.notes) if include_notes else []

    def _duplicate(session):
        order = next_block_order(session, target_day.id)
        # Copies are plain blocks: no template link, never completed
        copy = TimeBlock(
            day_id=target_day.id,
            name=source.name,
            start_time=start_time,
            end_time=end_time,
            color=source.color,
            order=order,
            is_completed=False,
            next_note_order=len(source_notes),
        )
        session.add(copy)
        session.flush()
        if source_notes:
            session.add_all([
                Note(time_block_id=copy.id, content=note.content, order=index)
                for index, note in enumerate(source_notes)
            ])
            session.flush()
        update_completion_status(target_day.id, tx=session)
        return copy

    copy = run_in_transaction(_duplicate)
    return jsonify(copy.to_dict()), 201
