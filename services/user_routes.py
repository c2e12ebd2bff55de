"""User/session routes."""
from flask import jsonify, request, session

from models import Day, User, db
from services.auth_service import get_current_user


def create_user():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = str(data.get('password') or '')

    if not username:
        return jsonify({'error': 'Username is required'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 409

    email = (data.get('email') or '').strip().lower() or None
    user = User(username=username, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    # Automatically set as current user
    session['user_id'] = user.id
    session.permanent = True

    return jsonify({'success': True, 'user_id': user.id, 'username': user.username}), 201


def set_user(user_id):
    """Set the current user in session after a password check."""
    data = request.get_json(silent=True) or {}
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    if not user.check_password(str(data.get('password') or '')):
        return jsonify({'error': 'Invalid password'}), 401

    session['user_id'] = user.id
    session.permanent = True
    return jsonify({'success': True, 'username': user.username, 'user_id': user.id})


def current_user_info():
    user = get_current_user()
    if user:
        return jsonify(user.to_dict())
    return jsonify({'id': None, 'username': None})


def user_stats():
    """Cached streak fields plus day completion totals."""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    # Days without blocks are not active and carry a stale completion flag
    active_days = Day.query.filter(Day.user_id == user.id, Day.time_blocks.any())
    total_days = active_days.count()
    completed_days = active_days.filter(Day.is_completed.is_(True)).count()
    return jsonify({
        'current_streak': user.current_streak,
        'longest_streak': user.longest_streak,
        'last_completed_date': user.last_completed_date.isoformat() if user.last_completed_date else None,
        'total_days': total_days,
        'total_completed_days': completed_days,
        'overall_day_completion_rate': round(completed_days * 100 / total_days) if total_days else 0,
    })
