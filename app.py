import os

from dotenv import load_dotenv
from flask import Flask, jsonify

load_dotenv()

from models import db, User
from apscheduler.schedulers.background import BackgroundScheduler
from backend.errors import PlannerError

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///planner.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
app.config['STREAK_LOOKBACK_DAYS'] = int(os.environ.get('STREAK_LOOKBACK_DAYS', '365'))

db.init_app(app)
scheduler = None


@app.errorhandler(PlannerError)
def handle_planner_error(exc):
    if exc.status_code == 409:
        app.logger.info(f"Conflict: {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


with app.app_context():
    db.create_all()


from services import (  # noqa: E402
    day_routes,
    event_routes,
    note_routes,
    template_routes,
    time_block_routes,
    user_routes,
)

# Users
app.add_url_rule('/api/users', view_func=user_routes.create_user, methods=['POST'])
app.add_url_rule('/api/users/select/<int:user_id>', view_func=user_routes.set_user, methods=['POST'])
app.add_url_rule('/api/users/me', view_func=user_routes.current_user_info, methods=['GET'])
app.add_url_rule('/api/users/me/stats', view_func=user_routes.user_stats, methods=['GET'])

# Days
app.add_url_rule('/api/days', view_func=day_routes.days_collection, methods=['GET', 'POST'])
app.add_url_rule('/api/days/<int:day_id>', view_func=day_routes.day_detail, methods=['GET', 'DELETE'])
app.add_url_rule('/api/days/date/<date_str>', view_func=day_routes.day_by_date, methods=['GET'])

# Time blocks
app.add_url_rule('/api/days/<int:day_id>/time-blocks', view_func=time_block_routes.list_time_blocks, methods=['GET'])
app.add_url_rule('/api/days/<int:day_id>/time-blocks/reorder', view_func=time_block_routes.reorder_time_blocks, methods=['PUT'])
app.add_url_rule('/api/time-blocks', view_func=time_block_routes.create_time_block, methods=['POST'])
app.add_url_rule('/api/time-blocks/<int:block_id>', view_func=time_block_routes.time_block_detail, methods=['GET', 'PATCH', 'DELETE'])
app.add_url_rule('/api/time-blocks/<int:block_id>/duplicate', view_func=time_block_routes.duplicate_time_block, methods=['POST'])

# Notes
app.add_url_rule('/api/time-blocks/<int:block_id>/notes', view_func=note_routes.create_note, methods=['POST'])
app.add_url_rule('/api/notes/<int:note_id>', view_func=note_routes.note_detail, methods=['PATCH', 'DELETE'])

# Templates
app.add_url_rule('/api/time-block-templates', view_func=template_routes.templates_collection, methods=['GET', 'POST'])
app.add_url_rule('/api/time-block-templates/<int:template_id>', view_func=template_routes.template_detail, methods=['GET', 'PATCH', 'DELETE'])
app.add_url_rule('/api/time-block-templates/<int:template_id>/deactivate', view_func=template_routes.deactivate, methods=['PATCH'])

# Events
app.add_url_rule('/api/events', view_func=event_routes.events_collection, methods=['GET', 'POST'])
app.add_url_rule('/api/events/calendar', view_func=event_routes.event_calendar, methods=['GET'])
app.add_url_rule('/api/events/<int:event_id>', view_func=event_routes.event_detail, methods=['GET', 'PATCH', 'DELETE'])


def _materialize_today_for_all_users():
    """Materialize today's template occurrences for every user."""
    from backend.dates import utc_today
    from backend.materializer import materialize_for_date

    with app.app_context():
        today = utc_today()
        user_ids = [u.id for u in User.query.all()]
        failures = 0
        for uid in user_ids:
            try:
                materialize_for_date(uid, today)
            except Exception as e:
                db.session.rollback()
                failures += 1
                app.logger.error(f"Error materializing templates for user {uid}: {e}")
        app.logger.info(f"Nightly materialization done for {len(user_ids)} user(s), {failures} failure(s)")


def _start_scheduler():
    """Start background scheduler for nightly template materialization."""
    global scheduler
    if os.environ.get('ENABLE_CALENDAR_JOBS', '1') != '1':
        return
    if scheduler and scheduler.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    scheduler = BackgroundScheduler(timezone=app.config.get('DEFAULT_TIMEZONE', 'UTC'))
    scheduler.add_job(
        _materialize_today_for_all_users,
        'cron',
        hour=0,
        minute=5,
        id='materialize_templates',
        replace_existing=True
    )
    scheduler.start()

    # Catch up if the server started after the scheduled time
    try:
        _materialize_today_for_all_users()
    except Exception as e:
        app.logger.error(f"Error running materialization catch-up: {e}")


# Start scheduler on process startup (not request-dependent).
# Can be disabled for tooling/scripts/tests that only need app context.
if os.environ.get('BOOTSTRAP_JOBS_ON_IMPORT', '1') == '1':
    try:
        _start_scheduler()
    except Exception as e:
        app.logger.error(f"Error starting scheduler on startup: {e}")


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG', '0') == '1', port=int(os.environ.get('PORT', '5000')))
