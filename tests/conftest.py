import os

# Must be set before app.py is imported: it reads them at import time
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['BOOTSTRAP_JOBS_ON_IMPORT'] = '0'
os.environ['ENABLE_CALENDAR_JOBS'] = '0'

import pytest

from app import app as flask_app
from backend.ordering import next_block_order
from models import Day, TimeBlock, TimeBlockTemplate, TemplateNote, User, db


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, API_SHARED_KEY=None)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user(app):
    u = User(username='planner')
    u.set_password('secret')
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def auth_client(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
    return client


@pytest.fixture
def make_day(user):
    """Create a day with blocks; `flags` lists each block's is_completed."""
    def _make(day_value, flags=(), owner=None):
        owner = owner or user
        day = Day(user_id=owner.id, date=day_value, is_completed=bool(flags) and all(flags))
        db.session.add(day)
        db.session.flush()
        for idx, flag in enumerate(flags):
            db.session.add(TimeBlock(
                day_id=day.id,
                name=f'Block {idx}',
                start_time='09:00',
                end_time='10:00',
                order=next_block_order(db.session, day.id),
                is_completed=flag,
            ))
        db.session.commit()
        return day
    return _make


@pytest.fixture
def make_template(user):
    def _make(days_of_week='1,2,3,4,5,6,7', notes=(), **fields):
        template = TimeBlockTemplate(
            user_id=user.id,
            name=fields.pop('name', 'Deep work'),
            start_time=fields.pop('start_time', '09:00'),
            end_time=fields.pop('end_time', '11:00'),
            days_of_week=days_of_week,
            is_active=fields.pop('is_active', True),
            **fields
        )
        for idx, content in enumerate(notes):
            template.notes.append(TemplateNote(content=content, order=idx))
        db.session.add(template)
        db.session.commit()
        return template
    return _make
