from datetime import timedelta

from sqlalchemy import text

import services.time_block_routes as time_block_routes
from backend.dates import utc_today
from models import Day, MaterializationExclusion, TimeBlock, User, db


def _create_day(client, value):
    resp = client.post('/api/days', json={'date': value})
    assert resp.status_code == 201
    return resp.get_json()


def _create_block(client, day_id, name='Focus', start='09:00', end='10:00', **extra):
    resp = client.post('/api/time-blocks', json={
        'day_id': day_id, 'name': name, 'start_time': start, 'end_time': end, **extra
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_requests_without_user_are_rejected(client):
    resp = client.get('/api/days?start=2024-01-01&end=2024-01-07')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'No user selected'}


def test_create_and_select_user(client):
    resp = client.post('/api/users', json={'username': 'ana', 'password': 'pw'})
    assert resp.status_code == 201
    user_id = resp.get_json()['user_id']

    assert client.get('/api/users/me').get_json()['username'] == 'ana'
    assert client.post('/api/users', json={'username': 'ana', 'password': 'x'}).status_code == 409
    assert client.post(f'/api/users/select/{user_id}', json={'password': 'wrong'}).status_code == 401
    assert client.post(f'/api/users/select/{user_id}', json={'password': 'pw'}).status_code == 200


def test_api_key_headers_select_user(app, client, user):
    app.config['API_SHARED_KEY'] = 'k3y'
    resp = client.get('/api/users/me', headers={'X-API-Key': 'k3y', 'X-User-Id': str(user.id)})
    assert resp.get_json()['id'] == user.id
    resp = client.get('/api/users/me', headers={'X-API-Key': 'nope', 'X-User-Id': str(user.id)})
    assert resp.get_json()['id'] is None


def test_day_creation_validates_and_rejects_duplicates(auth_client):
    _create_day(auth_client, '2024-01-01')
    dup = auth_client.post('/api/days', json={'date': '2024-01-01'})
    assert dup.status_code == 409
    assert 'error' in dup.get_json()
    assert auth_client.post('/api/days', json={'date': '2024-13-01'}).status_code == 400
    assert auth_client.post('/api/days', json={'date': '1899-12-31'}).status_code == 400


def test_inverted_range_is_rejected(auth_client):
    resp = auth_client.get('/api/days?start=2024-01-07&end=2024-01-01')
    assert resp.status_code == 400


def test_listing_days_materializes_templates_once(auth_client):
    resp = auth_client.post('/api/time-block-templates', json={
        'name': 'Standup',
        'start_time': '09:00',
        'end_time': '09:15',
        'days_of_week': [1],
        'notes': [{'content': 'Blockers', 'order': 3}, {'content': 'Yesterday', 'order': 1}],
    })
    assert resp.status_code == 201
    template = resp.get_json()
    assert [n['content'] for n in template['notes']] == ['Yesterday', 'Blockers']

    for _ in range(2):
        days = auth_client.get('/api/days?start=2024-01-01&end=2024-01-14').get_json()
        assert [d['date'] for d in days] == ['2024-01-01', '2024-01-08']
        blocks = days[0]['time_blocks']
        assert len(blocks) == 1
        assert blocks[0]['template_id'] == template['id']
        assert [(n['content'], n['order']) for n in blocks[0]['notes']] == [('Yesterday', 0), ('Blockers', 1)]


def test_day_by_date_returns_null_when_nothing_exists(auth_client):
    resp = auth_client.get('/api/days/date/2024-02-02')
    assert resp.status_code == 200
    assert resp.get_json() is None
    assert auth_client.get('/api/days/date/not-a-date').status_code == 400


def test_time_block_orders_and_validation(auth_client):
    day = _create_day(auth_client, '2024-01-01')
    first = _create_block(auth_client, day['id'])
    second = _create_block(auth_client, day['id'], start='10:00', end='11:00')
    assert (first['order'], second['order']) == (0, 1)

    bad = auth_client.post('/api/time-blocks', json={
        'day_id': day['id'], 'name': 'X', 'start_time': '11:00', 'end_time': '10:00'
    })
    assert bad.status_code == 400
    bad = auth_client.post('/api/time-blocks', json={
        'day_id': day['id'], 'name': 'X', 'start_time': '9:00', 'end_time': '10:00'
    })
    assert bad.status_code == 400
    clash = auth_client.post('/api/time-blocks', json={
        'day_id': day['id'], 'name': 'X', 'start_time': '12:00', 'end_time': '13:00', 'order': 1
    })
    assert clash.status_code == 400
    missing = auth_client.post('/api/time-blocks', json={
        'day_id': 9999, 'name': 'X', 'start_time': '12:00', 'end_time': '13:00'
    })
    assert missing.status_code == 404


def test_completing_blocks_cascades_to_day_and_streak(auth_client, user):
    today = utc_today().isoformat()
    day = _create_day(auth_client, today)
    a = _create_block(auth_client, day['id'])
    b = _create_block(auth_client, day['id'], start='10:00', end='11:00')

    auth_client.patch(f"/api/time-blocks/{a['id']}", json={'is_completed': True})
    assert auth_client.get(f"/api/days/{day['id']}").get_json()['is_completed'] is False

    resp = auth_client.patch(f"/api/time-blocks/{b['id']}", json={'is_completed': True})
    assert resp.get_json()['is_completed'] is True
    assert auth_client.get(f"/api/days/{day['id']}").get_json()['is_completed'] is True

    stats = auth_client.get('/api/users/me/stats').get_json()
    assert stats['current_streak'] == 1
    assert stats['longest_streak'] == 1
    assert stats['last_completed_date'] == today
    assert stats['overall_day_completion_rate'] == 100

    auth_client.patch(f"/api/time-blocks/{b['id']}", json={'is_completed': False})
    assert auth_client.get(f"/api/days/{day['id']}").get_json()['is_completed'] is False
    stats = auth_client.get('/api/users/me/stats').get_json()
    assert stats['current_streak'] == 0
    assert stats['longest_streak'] == 1


def test_deleting_block_reindexes_and_recompletes_day(auth_client):
    day = _create_day(auth_client, '2024-01-01')
    blocks = [_create_block(auth_client, day['id'], name=f'B{i}') for i in range(3)]
    auth_client.patch(f"/api/time-blocks/{blocks[0]['id']}", json={'is_completed': True})
    auth_client.patch(f"/api/time-blocks/{blocks[2]['id']}", json={'is_completed': True})

    assert auth_client.delete(f"/api/time-blocks/{blocks[1]['id']}").status_code == 204
    listed = auth_client.get(f"/api/days/{day['id']}/time-blocks").get_json()
    assert [(tb['name'], tb['order']) for tb in listed] == [('B0', 0), ('B2', 1)]
    assert auth_client.get(f"/api/days/{day['id']}").get_json()['is_completed'] is True


def test_deleting_materialized_block_leaves_tombstone(auth_client, make_template):
    template = make_template(days_of_week='1')
    day = auth_client.get('/api/days/date/2024-01-01').get_json()
    block_id = day['time_blocks'][0]['id']

    assert auth_client.delete(f'/api/time-blocks/{block_id}').status_code == 204
    assert MaterializationExclusion.query.filter_by(template_id=template.id).count() == 1

    day = auth_client.get('/api/days/date/2024-01-01').get_json()
    assert day['time_blocks'] == []


def test_deleting_day_excludes_its_template_dates(auth_client, make_template):
    make_template(days_of_week='1')
    day = auth_client.get('/api/days/date/2024-01-01').get_json()

    assert auth_client.delete(f"/api/days/{day['id']}").status_code == 204
    assert auth_client.get('/api/days/date/2024-01-01').get_json() is None
    assert auth_client.get(f"/api/days/{day['id']}").status_code == 404


def test_reorder_requires_full_permutation(auth_client):
    day = _create_day(auth_client, '2024-01-01')
    ids = [_create_block(auth_client, day['id'], name=f'B{i}')['id'] for i in range(3)]

    resp = auth_client.put(f"/api/days/{day['id']}/time-blocks/reorder", json={'ordered_ids': ids[::-1]})
    assert resp.status_code == 200
    assert [tb['id'] for tb in resp.get_json()] == ids[::-1]
    assert [tb['order'] for tb in resp.get_json()] == [0, 1, 2]

    partial = auth_client.put(f"/api/days/{day['id']}/time-blocks/reorder", json={'ordered_ids': ids[:2]})
    assert partial.status_code == 400
    foreign = auth_client.put(f"/api/days/{day['id']}/time-blocks/reorder", json={'ordered_ids': ids[:2] + [999]})
    assert foreign.status_code == 400


def test_duplicate_copies_block_and_notes(auth_client):
    source_day = _create_day(auth_client, '2024-01-01')
    target_day = _create_day(auth_client, '2024-01-02')
    _create_block(auth_client, target_day['id'], name='Existing')
    block = _create_block(auth_client, source_day['id'], color='#A5D8FF')
    auth_client.post(f"/api/time-blocks/{block['id']}/notes", json={'content': 'first'})
    auth_client.post(f"/api/time-blocks/{block['id']}/notes", json={'content': 'second'})
    auth_client.patch(f"/api/time-blocks/{block['id']}", json={'is_completed': True})

    resp = auth_client.post(f"/api/time-blocks/{block['id']}/duplicate", json={
        'target_day_id': target_day['id'], 'start_time': '14:00', 'end_time': '15:00'
    })
    assert resp.status_code == 201
    copy = resp.get_json()
    assert copy['day_id'] == target_day['id']
    assert copy['order'] == 1
    assert copy['is_completed'] is False
    assert copy['template_id'] is None
    assert copy['color'] == '#A5D8FF'
    assert (copy['start_time'], copy['end_time']) == ('14:00', '15:00')
    assert [(n['content'], n['order']) for n in copy['notes']] == [('first', 0), ('second', 1)]

    bare = auth_client.post(f"/api/time-blocks/{block['id']}/duplicate", json={
        'target_day_id': target_day['id'], 'include_notes': False
    }).get_json()
    assert bare['notes'] == []


def test_note_lifecycle(auth_client):
    day = _create_day(auth_client, '2024-01-01')
    block = _create_block(auth_client, day['id'])
    url = f"/api/time-blocks/{block['id']}/notes"
    first = auth_client.post(url, json={'content': 'one'}).get_json()
    second = auth_client.post(url, json={'content': 'two'}).get_json()
    assert (first['order'], second['order']) == (0, 1)
    assert auth_client.post(url, json={'content': '  '}).status_code == 400

    edited = auth_client.patch(f"/api/notes/{second['id']}", json={'content': 'TWO'}).get_json()
    assert edited['content'] == 'TWO'

    assert auth_client.delete(f"/api/notes/{first['id']}").status_code == 204
    notes = auth_client.get(f"/api/time-blocks/{block['id']}").get_json()['notes']
    assert [(n['content'], n['order']) for n in notes] == [('TWO', 0)]


def test_other_users_rows_are_not_found(app, auth_client):
    other = User(username='other')
    other.set_password('pw')
    db.session.add(other)
    db.session.commit()
    day = Day(user_id=other.id, date=utc_today())
    db.session.add(day)
    db.session.commit()
    block = TimeBlock(day_id=day.id, name='Hidden', start_time='09:00', end_time='10:00', order=0)
    db.session.add(block)
    db.session.commit()

    assert auth_client.get(f'/api/days/{day.id}').status_code == 404
    assert auth_client.patch(f'/api/time-blocks/{block.id}', json={'name': 'Mine'}).status_code == 404


def test_template_validation_and_updates(auth_client):
    base = {'name': 'Gym', 'start_time': '07:00', 'end_time': '08:00'}
    assert auth_client.post('/api/time-block-templates', json={**base, 'days_of_week': []}).status_code == 400
    assert auth_client.post('/api/time-block-templates', json={**base, 'days_of_week': [0]}).status_code == 400
    assert auth_client.post('/api/time-block-templates', json={**base, 'days_of_week': [2, 2]}).status_code == 400
    bad_notes = {**base, 'days_of_week': [2], 'notes': [{'content': 'a', 'order': 0}, {'content': 'b', 'order': 0}]}
    assert auth_client.post('/api/time-block-templates', json=bad_notes).status_code == 400

    created = auth_client.post('/api/time-block-templates', json={**base, 'days_of_week': [4, 2]}).get_json()
    assert created['days_of_week'] == [2, 4]
    assert created['is_active'] is True

    url = f"/api/time-block-templates/{created['id']}"
    updated = auth_client.patch(url, json={'name': 'Gym (legs)', 'days_of_week': [6, 7]}).get_json()
    assert updated['name'] == 'Gym (legs)'
    assert updated['days_of_week'] == [6, 7]
    assert auth_client.patch(url, json={'end_time': '06:00'}).status_code == 400

    listed = auth_client.get('/api/time-block-templates').get_json()
    assert [t['id'] for t in listed] == [created['id']]

    assert auth_client.delete(url).status_code == 204
    assert auth_client.get(url).status_code == 404


def test_deactivating_template_removes_future_occurrences(auth_client, make_template):
    today = utc_today()
    template = make_template()
    end = (today + timedelta(days=2)).isoformat()
    auth_client.get(f'/api/days?start={today.isoformat()}&end={end}')
    assert TimeBlock.query.filter_by(template_id=template.id).count() == 3

    resp = auth_client.patch(
        f'/api/time-block-templates/{template.id}/deactivate',
        json={'delete_future_occurrences': True}
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['is_active'] is False
    assert body['active_until'] == today.isoformat()
    assert TimeBlock.query.filter_by(template_id=template.id).count() == 0


def test_event_recurrence_consistency_is_enforced(auth_client):
    bad = auth_client.post('/api/events', json={'title': 'Rent', 'date': '2024-01-31', 'recurrence_type': 'MONTHLY'})
    assert bad.status_code == 400
    bad = auth_client.post('/api/events', json={'title': 'Rent', 'date': '2024-01-31', 'is_recurring': True})
    assert bad.status_code == 400
    bad = auth_client.post('/api/events', json={
        'title': 'Rent', 'date': '2024-01-31', 'is_recurring': True, 'recurrence_type': 'HOURLY'
    })
    assert bad.status_code == 400


def test_event_calendar_expands_recurring_events(auth_client):
    rent = auth_client.post('/api/events', json={
        'title': 'Rent', 'date': '2024-01-31', 'is_recurring': True, 'recurrence_type': 'monthly'
    }).get_json()
    assert rent['recurrence_type'] == 'MONTHLY'
    auth_client.post('/api/events', json={'title': 'Dentist', 'date': '2024-02-10'})
    auth_client.post('/api/events', json={'title': 'Later', 'date': '2024-06-01'})

    resp = auth_client.get('/api/events/calendar?start=2024-02-01&end=2024-03-31')
    assert resp.status_code == 200
    items = [(e['title'], e['occurrence_date'], e['is_original']) for e in resp.get_json()]
    assert items == [
        ('Dentist', '2024-02-10', True),
        ('Rent', '2024-02-29', False),
        ('Rent', '2024-03-31', False),
    ]
    assert auth_client.get('/api/events/calendar?start=2024-03-01&end=2024-02-01').status_code == 400


def test_event_detail_roundtrip(auth_client):
    event = auth_client.post('/api/events', json={'title': 'Call', 'date': '2024-04-01'}).get_json()
    url = f"/api/events/{event['id']}"

    assert auth_client.get(url).get_json()['title'] == 'Call'
    updated = auth_client.patch(url, json={'is_recurring': True, 'recurrence_type': 'WEEKLY'}).get_json()
    assert updated['is_recurring'] is True
    assert auth_client.patch(url, json={'recurrence_type': 'NONE'}).status_code == 400

    assert len(auth_client.get('/api/events').get_json()) == 1
    assert auth_client.delete(url).status_code == 204
    assert auth_client.get(url).status_code == 404


def test_explicit_order_moves_counter_forward(auth_client):
    day = _create_day(auth_client, '2024-01-01')
    pinned = _create_block(auth_client, day['id'], order=5)
    following = _create_block(auth_client, day['id'])
    assert (pinned['order'], following['order']) == (5, 6)


def test_explicit_order_never_moves_counter_back(auth_client, monkeypatch):
    day = _create_day(auth_client, '2024-01-01')
    lookup = time_block_routes.get_owned_day

    def _lookup_then_advance(day_id, user_id):
        found = lookup(day_id, user_id)
        # A concurrent writer advances the counter behind this session's copy
        db.session.execute(text('UPDATE day SET next_time_block_order = 10 WHERE id = :id'), {'id': found.id})
        return found

    monkeypatch.setattr(time_block_routes, 'get_owned_day', _lookup_then_advance)
    pinned = _create_block(auth_client, day['id'], order=3)
    assert pinned['order'] == 3
    assert db.session.get(Day, day['id']).next_time_block_order == 10

    following = _create_block(auth_client, day['id'])
    assert following['order'] == 10


def test_deleting_last_block_drops_day_from_streak_and_stats(auth_client):
    day = _create_day(auth_client, utc_today().isoformat())
    block = _create_block(auth_client, day['id'])
    auth_client.patch(f"/api/time-blocks/{block['id']}", json={'is_completed': True})
    assert auth_client.get('/api/users/me/stats').get_json()['current_streak'] == 1

    assert auth_client.delete(f"/api/time-blocks/{block['id']}").status_code == 204
    stats = auth_client.get('/api/users/me/stats').get_json()
    assert stats['current_streak'] == 0
    assert stats['last_completed_date'] is None
    assert stats['longest_streak'] == 1
    assert stats['total_days'] == 0
    assert stats['total_completed_days'] == 0
