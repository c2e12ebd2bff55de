"""
Completion cascade: TimeBlock.is_completed -> Day.is_completed -> User streak.

Day.is_completed and the User streak columns are caches. They are only
written here, either inside the caller's transaction (pass the session as
`tx`) or inside one opened for the purpose.
"""
from collections import namedtuple
from datetime import timedelta

from flask import current_app

from backend.dates import utc_today
from backend.transactions import run_in_transaction
from models import Day, TimeBlock, User

DEFAULT_LOOKBACK_DAYS = 365

StreakSummary = namedtuple('StreakSummary', ['current_streak', 'longest_streak', 'last_completed_date'])


def compute_streaks(active_days, today):
    """
    Derive streak numbers from (date, is_completed) pairs of active days.

    An incomplete day only gets grace when it is both the most recent active
    day and today; any other incomplete day ends the current streak.
    """
    by_date = {}
    for day_value, completed in active_days:
        by_date.setdefault(day_value, bool(completed))
    if not by_date:
        return StreakSummary(0, 0, None)

    newest_first = sorted(by_date.items(), key=lambda item: item[0], reverse=True)

    start = 0
    most_recent_date, most_recent_completed = newest_first[0]
    is_today = most_recent_date == today
    if is_today and not most_recent_completed:
        start = 1

    current = 0
    for _, completed in newest_first[start:]:
        if not completed:
            break
        current += 1

    longest = 0
    running = 0
    for _, completed in reversed(newest_first):
        if completed:
            running += 1
            longest = max(longest, running)
        else:
            running = 0

    last_completed = next((day_value for day_value, completed in newest_first if completed), None)
    return StreakSummary(current, longest, last_completed)


def load_active_days(session, user_id, today, lookback_days=DEFAULT_LOOKBACK_DAYS):
    cutoff = today - timedelta(days=lookback_days)
    return session.query(Day.date, Day.is_completed).filter(
        Day.user_id == user_id,
        Day.date >= cutoff,
        Day.date <= today,
        Day.time_blocks.any()
    ).order_by(Day.date.desc()).all()


def recompute_user_streak(tx, user_id, today=None):
    user = tx.get(User, user_id)
    if user is None:
        return None

    today = today or utc_today()
    lookback = int(current_app.config.get('STREAK_LOOKBACK_DAYS', DEFAULT_LOOKBACK_DAYS))
    rows = load_active_days(tx, user_id, today, lookback)

    if not rows:
        # Longest streak is a historical record and survives an empty window
        user.current_streak = 0
        user.last_completed_date = None
        tx.flush()
        return StreakSummary(0, user.longest_streak, None)

    summary = compute_streaks(rows, today)
    user.current_streak = summary.current_streak
    user.last_completed_date = summary.last_completed_date
    user.longest_streak = max(summary.longest_streak, user.longest_streak or 0)
    tx.flush()
    current_app.logger.info(
        f"Streak recomputed for user {user_id}: current={user.current_streak} longest={user.longest_streak}"
    )
    return StreakSummary(user.current_streak, user.longest_streak, user.last_completed_date)


def update_completion_status(day_id, tx=None, today=None):
    """
    Recompute one day's completion flag; recompute the owner's streak only
    when the flag actually changes. Returns True when the flag changed.
    """
    def _execute(session):
        day = session.get(Day, day_id)
        if day is None:
            return False
        flags = [row.is_completed for row in session.query(TimeBlock.is_completed).filter(TimeBlock.day_id == day_id)]
        if not flags:
            return False

        all_completed = all(flags)
        if day.is_completed == all_completed:
            return False

        day.is_completed = all_completed
        session.flush()
        recompute_user_streak(session, day.user_id, today=today)
        return True

    if tx is not None:
        return _execute(tx)
    return run_in_transaction(_execute)
