from models import db


def run_in_transaction(fn, session=None):
    """
    Run fn(session) atomically: commit when it returns, roll back and re-raise
    on any exception. The session itself is the transaction handle passed to
    helpers that accept `tx`.
    """
    session = session or db.session
    try:
        result = fn(session)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return result
