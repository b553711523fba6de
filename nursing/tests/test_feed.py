import math

import pytest

from nursing.realtime.alerts import NEW_REQUEST_CUE, sound_cue
from nursing.realtime.feed import LiveFeed
from nursing.realtime.subscriptions import DELETE, INSERT, UPDATE, Subscription, groups_for_change
from nursing.services.emergencies import filter_by_radius
from nursing.services.geo import EARTH_RADIUS_KM
from nursing.services.geolocation import Position


def row(rid, created, lat=24.8607, lng=67.0011, status='live', **extra):
    return {'id': rid, 'createdAt': created, 'locationLat': lat, 'locationLng': lng, 'status': status, **extra}


def ids(rows):
    return [r['id'] for r in rows]


def test_load_keeps_only_live_rows_newest_first():
    feed = LiveFeed()
    feed.load([
        row('a', '2026-01-01T10:00:00'),
        row('b', '2026-01-01T11:00:00'),
        row('c', '2026-01-01T12:00:00', status='matched'),
    ], offered_ids=['a'])
    visible = feed.visible()
    assert ids(visible) == ['b', 'a']
    assert [r['offerSent'] for r in visible] == [False, True]
    assert all(r['distanceKm'] is None for r in visible)


def test_insert_update_delete_patch_the_store():
    feed = LiveFeed()
    feed.load([row('a', '2026-01-01T10:00:00')])

    assert feed.apply({'event': INSERT, 'new': row('b', '2026-01-01T11:00:00'), 'old': None})
    assert ids(feed.visible()) == ['b', 'a']

    assert feed.apply({'event': UPDATE, 'new': row('a', '2026-01-01T10:00:00', notes='stairs'), 'old': {'id': 'a'}})
    assert feed.visible()[1]['notes'] == 'stairs'

    # leaving live removes the row
    assert feed.apply({'event': UPDATE, 'new': row('b', '2026-01-01T11:00:00', status='matched'), 'old': {'id': 'b'}})
    assert ids(feed.visible()) == ['a']

    assert feed.apply({'event': DELETE, 'new': None, 'old': {'id': 'a'}})
    assert feed.visible() == []


def test_events_for_unknown_rows_do_not_change_the_store():
    feed = LiveFeed()
    assert not feed.apply({'event': DELETE, 'new': None, 'old': {'id': 'x'}})
    assert not feed.apply({'event': UPDATE, 'new': row('x', '2026-01-01', status='expired'), 'old': None})
    assert not feed.apply({'event': 'TRUNCATE'})
    assert len(feed) == 0


def test_radius_filter_and_distance():
    # one request at the origin, one ~5.5 km north, one ~111 km north
    feed = LiveFeed(radius_km=10, origin=Position(24.8607, 67.0011))
    feed.load([
        row('near', '2026-01-01T10:00:00'),
        row('mid', '2026-01-01T11:00:00', lat=24.9100),
        row('far', '2026-01-01T12:00:00', lat=25.8607),
    ])
    visible = feed.visible()
    assert ids(visible) == ['mid', 'near']
    assert visible[0]['distanceKm'] == pytest.approx(5.5, abs=0.1)
    assert visible[1]['distanceKm'] == 0

    feed.set_origin(None)
    assert ids(feed.visible()) == ['far', 'mid', 'near']


def north_of(origin, km):
    return origin.lat + math.degrees(km / EARTH_RADIUS_KM)


@pytest.mark.parametrize('radius', [1, 5, 10])
def test_radius_boundary_rows(radius):
    origin = Position(24.8607, 67.0011)
    rows = [
        row('inside', '2026-01-01T10:00:00', lat=north_of(origin, radius - 1)),
        row('edge', '2026-01-01T11:00:00', lat=north_of(origin, radius)),
        row('outside', '2026-01-01T12:00:00', lat=north_of(origin, radius + 1)),
    ]
    assert ids(filter_by_radius(rows, origin, radius)) == ['inside', 'edge']

    feed = LiveFeed(radius_km=radius, origin=origin)
    feed.load(rows)
    visible = feed.visible()
    assert ids(visible) == ['edge', 'inside']
    assert visible[0]['distanceKm'] == pytest.approx(radius, abs=0.05)


def test_mark_offered():
    feed = LiveFeed()
    feed.load([row('a', '2026-01-01')])
    feed.mark_offered('a')
    assert feed.visible()[0]['offerSent'] is True
    assert feed.offered_ids == {'a'}


def test_subscription_filters():
    sub = Subscription.parse('emergency_requests', 'status=eq.live')
    assert sub.group == 'emergency_requests.status.live'
    assert sub.matches({'status': 'live'})
    assert not sub.matches({'status': 'matched'})
    assert Subscription.parse('emergency_requests').matches({'status': 'anything'})
    with pytest.raises(ValueError):
        Subscription.parse('emergency_requests', 'status=gt.live')


def test_change_reaches_groups_of_old_and_new_row():
    groups = groups_for_change('emergency_requests', ({'id': 'r1', 'status': 'matched'}, {'id': 'r1', 'status': 'live'}),
                               ('id', 'status'))
    assert 'emergency_requests.status.live' in groups
    assert 'emergency_requests.status.matched' in groups
    assert 'emergency_requests.id.r1' in groups


@pytest.mark.asyncio
async def test_sound_cue_frame():
    sent = []

    async def send(frame):
        sent.append(frame)

    await sound_cue(send)
    assert sent == [NEW_REQUEST_CUE.frame()]
    assert sent[0]['frequency_hz'] == 800.0
    assert sent[0]['peak_gain'] == 0.3
    assert sent[0]['duration_s'] == 0.5


@pytest.mark.asyncio
async def test_sound_cue_failure_is_swallowed():
    async def broken(frame):
        raise RuntimeError('socket gone')

    await sound_cue(broken)
