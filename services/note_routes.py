"""Time block note routes."""
from flask import jsonify, request

from backend.errors import ValidationError
from backend.lookups import get_owned_note, get_owned_time_block
from backend.ordering import next_note_order, reindex_notes
from backend.transactions import run_in_transaction
from models import Note, db
from services.auth_service import get_current_user


def _parse_content(raw):
    content = raw.strip() if isinstance(raw, str) else ''
    if not content:
        raise ValidationError('content is required')
    return content


def create_note(block_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    block = get_owned_time_block(block_id, user.id)
    data = request.get_json(silent=True) or {}
    content = _parse_content(data.get('content'))

    def _create(session):
        note = Note(time_block_id=block.id, content=content, order=next_note_order(session, block.id))
        session.add(note)
        session.flush()
        return note

    note = run_in_transaction(_create)
    return jsonify(note.to_dict()), 201


def note_detail(note_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    note = get_owned_note(note_id, user.id)

    if request.method == 'DELETE':
        block_id = note.time_block_id

        def _delete(session):
            session.delete(note)
            session.flush()
            reindex_notes(session, block_id)

        run_in_transaction(_delete)
        return '', 204

    data = request.get_json(silent=True) or {}
    if 'content' in data:
        note.content = _parse_content(data.get('content'))
    db.session.commit()
    return jsonify(note.to_dict())
