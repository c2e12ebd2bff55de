"""
Template materialization: turn recurring time block templates into concrete
Day/TimeBlock/Note rows, once per (template, date).

The existence checks below only skip obviously finished work. Correctness
under concurrent callers comes from the (day_id, template_id) and
(user_id, date) unique constraints; losing that race is reported as success.
"""
from datetime import datetime

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from backend.completion import recompute_user_streak, update_completion_status
from backend.dates import iso_weekday, iter_days, utc_today
from backend.errors import InvalidRangeError, ValidationError
from backend.ordering import next_block_order, reindex_time_blocks
from backend.transactions import run_in_transaction
from models import (
    DAY_UNIQUE_CONSTRAINT,
    MATERIALIZED_BLOCK_CONSTRAINT,
    Day,
    MaterializationExclusion,
    Note,
    TemplateNote,
    TimeBlock,
    TimeBlockTemplate,
    db,
)

# SQLite reports the columns instead of the constraint name
_BENIGN_RACE_MARKERS = (
    MATERIALIZED_BLOCK_CONSTRAINT,
    DAY_UNIQUE_CONSTRAINT,
    'time_block.day_id, time_block.template_id',
    'day.user_id, day.date',
)


def is_duplicate_materialization(exc):
    """True when an IntegrityError comes from another caller materializing the same slot."""
    message = str(getattr(exc, 'orig', exc)).lower()
    return any(marker in message for marker in _BENIGN_RACE_MARKERS)


def upsert_day(session, user_id, day_value):
    """Create the (user_id, day_value) Day if missing and return its id."""
    dialect = session.get_bind().dialect.name
    if dialect in ('sqlite', 'postgresql'):
        if dialect == 'sqlite':
            from sqlalchemy.dialects.sqlite import insert
        else:
            from sqlalchemy.dialects.postgresql import insert
        now = datetime.utcnow()
        stmt = insert(Day.__table__).values(
            user_id=user_id,
            date=day_value,
            is_completed=False,
            next_time_block_order=0,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=['user_id', 'date'])
        session.execute(stmt)
    else:
        exists = session.query(Day.id).filter(Day.user_id == user_id, Day.date == day_value).scalar()
        if exists is None:
            session.add(Day(user_id=user_id, date=day_value))
            session.flush()
    return session.query(Day.id).filter(Day.user_id == user_id, Day.date == day_value).scalar()


def load_candidate_templates(user_id, start_day):
    return TimeBlockTemplate.query.filter(
        TimeBlockTemplate.user_id == user_id,
        TimeBlockTemplate.is_active.is_(True),
        or_(TimeBlockTemplate.active_until.is_(None), TimeBlockTemplate.active_until >= start_day)
    ).all()


def plan_materialization(user_id, templates, start_day, end_day):
    """Return the (template, date) pairs that still need rows inside the window."""
    template_ids = [t.id for t in templates]

    existing = db.session.query(TimeBlock.template_id, Day.date).join(
        Day, TimeBlock.day_id == Day.id
    ).filter(
        TimeBlock.template_id.in_(template_ids),
        Day.user_id == user_id,
        Day.date >= start_day,
        Day.date <= end_day
    ).all()
    existing_keys = {(template_id, day_value) for template_id, day_value in existing}

    exclusions = db.session.query(MaterializationExclusion.template_id, MaterializationExclusion.date).filter(
        MaterializationExclusion.template_id.in_(template_ids),
        MaterializationExclusion.date >= start_day,
        MaterializationExclusion.date <= end_day
    ).all()
    excluded_keys = {(template_id, day_value) for template_id, day_value in exclusions}

    weekdays_by_template = {}
    for template in templates:
        weekdays = set(template.weekdays())
        if not weekdays:
            current_app.logger.warning(f"Template {template.id} has no valid days_of_week; skipping")
        weekdays_by_template[template.id] = weekdays

    tasks = []
    for day_value in iter_days(start_day, end_day):
        weekday = iso_weekday(day_value)
        for template in templates:
            if weekday not in weekdays_by_template[template.id]:
                continue
            if template.active_until and template.active_until < day_value:
                continue
            key = (template.id, day_value)
            if key in existing_keys or key in excluded_keys:
                continue
            tasks.append((template, day_value))
    return tasks


def _materialize_tasks(session, user_id, tasks):
    touched_days = []
    for template, day_value in tasks:
        day_id = upsert_day(session, user_id, day_value)
        order = next_block_order(session, day_id)
        template_notes = list(template.notes)

        block = TimeBlock(
            day_id=day_id,
            template_id=template.id,
            name=template.name,
            start_time=template.start_time,
            end_time=template.end_time,
            color=template.color,
            order=order,
            is_completed=False,
            next_note_order=len(template_notes),
        )
        session.add(block)
        session.flush()

        if template_notes:
            session.add_all([
                Note(time_block_id=block.id, content=note.content, order=index)
                for index, note in enumerate(template_notes)
            ])
            session.flush()

        if day_id not in touched_days:
            touched_days.append(day_id)

    # A completed day that just received a fresh block is no longer complete
    for day_id in touched_days:
        update_completion_status(day_id, tx=session)


def materialize_for_date_range(user_id, start_day, end_day):
    """Ensure every active template occurrence inside [start_day, end_day] exists as rows."""
    if start_day > end_day:
        raise InvalidRangeError('start must be on or before end')

    templates = load_candidate_templates(user_id, start_day)
    if not templates:
        return

    tasks = plan_materialization(user_id, templates, start_day, end_day)
    if not tasks:
        return

    try:
        run_in_transaction(lambda session: _materialize_tasks(session, user_id, tasks))
    except IntegrityError as exc:
        if not is_duplicate_materialization(exc):
            raise
        current_app.logger.info(
            f"Materialization for user {user_id} {start_day}..{end_day} lost a race to a concurrent call; skipping"
        )
        return

    current_app.logger.info(
        f"Materialized {len(tasks)} time block(s) for user {user_id} between {start_day} and {end_day}"
    )


def materialize_for_date(user_id, day_value):
    return materialize_for_date_range(user_id, day_value, day_value)


TEMPLATE_FIELDS = ('name', 'start_time', 'end_time', 'color', 'days_of_week')


def _check_template_times(start_time, end_time):
    if start_time >= end_time:
        raise ValidationError('End time must be after start time')


def create_template(user_id, name, start_time, end_time, days_of_week, color=None, notes=()):
    """Create an active template. `notes` are contents in display order."""
    _check_template_times(start_time, end_time)
    template = TimeBlockTemplate(
        user_id=user_id,
        name=name,
        start_time=start_time,
        end_time=end_time,
        color=color,
        days_of_week=days_of_week,
        is_active=True,
    )
    for index, content in enumerate(notes):
        template.notes.append(TemplateNote(content=content, order=index))

    def _execute(session):
        session.add(template)
        session.flush()
        return template

    template = run_in_transaction(_execute)
    current_app.logger.info(f"Template {template.id} created for user {user_id}")
    return template


def update_template(template, **fields):
    """Update template fields. Rows already materialized keep their copied values."""
    unknown = set(fields) - set(TEMPLATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown template fields: {sorted(unknown)}")
    _check_template_times(fields.get('start_time', template.start_time), fields.get('end_time', template.end_time))

    def _execute(session):
        for key, value in fields.items():
            setattr(template, key, value)
        session.flush()
        return template

    return run_in_transaction(_execute)


def deactivate_template(template, active_until=None, delete_future_occurrences=False):
    """
    Stop a template from recurring after active_until (default: today, UTC).
    With delete_future_occurrences, uncompleted blocks dated today or later go too;
    completed and past blocks stay as history.
    """
    cutoff = active_until or utc_today()

    def _execute(session):
        template.is_active = False
        template.active_until = cutoff
        session.flush()

        if delete_future_occurrences:
            today = utc_today()
            blocks = session.query(TimeBlock).join(Day, TimeBlock.day_id == Day.id).filter(
                TimeBlock.template_id == template.id,
                TimeBlock.is_completed.is_(False),
                Day.date >= today
            ).all()
            day_ids = sorted({b.day_id for b in blocks})
            for block in blocks:
                session.delete(block)
            session.flush()
            emptied = False
            for day_id in day_ids:
                if reindex_time_blocks(session, day_id):
                    update_completion_status(day_id, tx=session)
                else:
                    emptied = True
            if emptied:
                recompute_user_streak(session, template.user_id)
            if blocks:
                current_app.logger.info(
                    f"Deleted {len(blocks)} future occurrence(s) of template {template.id}"
                )
        return template

    result = run_in_transaction(_execute)
    current_app.logger.info(f"Template {template.id} deactivated, active until {cutoff}")
    return result


def delete_template(template):
    """Delete a template with its notes and exclusions. Materialized blocks remain, unlinked."""
    template_id = template.id
    run_in_transaction(lambda session: session.delete(template))
    current_app.logger.info(f"Template {template_id} deleted")
