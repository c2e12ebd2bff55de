from sqlalchemy import update

from models import Day, Note, TimeBlock


def _increment_counter(session, model, counter, row_id):
    """Increment a counter column and return its pre-increment value in one round trip."""
    stmt = update(model).where(model.id == row_id).values({counter: counter + 1})
    if session.get_bind().dialect.update_returning:
        new_value = session.execute(stmt.returning(counter)).scalar_one()
    else:
        # Row is locked by the UPDATE for the rest of the transaction
        session.execute(stmt)
        new_value = session.query(counter).filter(model.id == row_id).scalar()
    return new_value - 1


def next_block_order(session, day_id):
    return _increment_counter(session, Day, Day.next_time_block_order, day_id)


def next_note_order(session, time_block_id):
    return _increment_counter(session, TimeBlock, TimeBlock.next_note_order, time_block_id)


def reserve_block_order(session, day_id, order):
    """Move the day's counter past an explicitly chosen order. Never moves it back."""
    stmt = update(Day).where(
        Day.id == day_id,
        Day.next_time_block_order <= order
    ).values(next_time_block_order=order + 1).execution_options(synchronize_session='fetch')
    session.execute(stmt)


def _two_phase_reindex(session, rows):
    # Park every row on a negative slot first so (parent, order) stays unique mid-flush
    for idx, row in enumerate(rows):
        row.order = -(idx + 1)
    session.flush()
    for idx, row in enumerate(rows):
        row.order = idx
    session.flush()


def reindex_time_blocks(session, day_id, ordered_ids=None):
    """Rewrite a day's block orders as 0..n-1, optionally following ordered_ids."""
    blocks = session.query(TimeBlock).filter(TimeBlock.day_id == day_id).order_by(TimeBlock.order.asc()).all()
    if ordered_ids is not None:
        by_id = {b.id: b for b in blocks}
        blocks = [by_id[block_id] for block_id in ordered_ids]
    _two_phase_reindex(session, blocks)
    return blocks


def reindex_notes(session, time_block_id):
    notes = session.query(Note).filter(Note.time_block_id == time_block_id).order_by(Note.order.asc()).all()
    _two_phase_reindex(session, notes)
    return notes
