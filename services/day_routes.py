"""Day routes. Reads materialize recurring templates for the requested window first."""
from flask import jsonify, request
from sqlalchemy.orm import selectinload

from backend.completion import recompute_user_streak
from backend.errors import ConflictError
from backend.lookups import get_owned_day
from backend.materializer import materialize_for_date, materialize_for_date_range
from backend.transactions import run_in_transaction
from models import Day, MaterializationExclusion, TimeBlock, db
from services.auth_service import get_current_user
from services.validation_service import parse_date_range, require_day_value


def _day_query(user_id):
    return Day.query.options(
        selectinload(Day.time_blocks).selectinload(TimeBlock.notes)
    ).filter(Day.user_id == user_id)


def days_collection():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        day_value = require_day_value(data.get('date'))
        if Day.query.filter_by(user_id=user.id, date=day_value).first():
            raise ConflictError('Day already exists for this date')
        day = Day(user_id=user.id, date=day_value)
        db.session.add(day)
        db.session.commit()
        return jsonify(day.to_dict()), 201

    start_day, end_day = parse_date_range(request.args.get('start'), request.args.get('end'))
    materialize_for_date_range(user.id, start_day, end_day)

    days = _day_query(user.id).filter(
        Day.date >= start_day,
        Day.date <= end_day
    ).order_by(Day.date.asc()).all()
    return jsonify([d.to_dict() for d in days])


def day_detail(day_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    day = get_owned_day(day_id, user.id)

    if request.method == 'DELETE':
        def _delete(session):
            # Keep recurring templates from refilling a day the user removed
            for block in day.time_blocks:
                if block.template_id is None:
                    continue
                exists = session.query(MaterializationExclusion.id).filter_by(
                    template_id=block.template_id, date=day.date
                ).first()
                if not exists:
                    session.add(MaterializationExclusion(template_id=block.template_id, date=day.date))
            session.delete(day)
            session.flush()
            recompute_user_streak(session, user.id)

        run_in_transaction(_delete)
        return '', 204

    return jsonify(day.to_dict())


def day_by_date(date_str):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    day_value = require_day_value(date_str)
    materialize_for_date(user.id, day_value)

    day = _day_query(user.id).filter(Day.date == day_value).first()
    return jsonify(day.to_dict() if day else None)
