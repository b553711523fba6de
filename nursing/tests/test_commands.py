from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from nursing.models import EmergencyRequest
from nursing.services.emergencies import expire_stale_requests

from .conftest import make_request

pytestmark = pytest.mark.django_db


def age(req, minutes):
    EmergencyRequest.objects.filter(id=req.id).update(created_at=timezone.now() - timedelta(minutes=minutes))


def test_expire_stale_requests(patient_user):
    old = make_request(patient_user)
    fresh = make_request(patient_user)
    matched = make_request(patient_user, status=EmergencyRequest.STATUS_MATCHED)
    age(old, 90)
    age(matched, 90)

    expired = expire_stale_requests(timedelta(minutes=60))
    assert expired == [str(old.id)]
    statuses = dict(EmergencyRequest.objects.values_list('id', 'status'))
    assert statuses == {
        old.id: EmergencyRequest.STATUS_EXPIRED,
        fresh.id: EmergencyRequest.STATUS_LIVE,
        matched.id: EmergencyRequest.STATUS_MATCHED,
    }


def test_expire_command_uses_ttl_setting(patient_user, settings):
    settings.EMERGENCY_REQUEST_TTL_MINUTES = 30
    req = make_request(patient_user)
    age(req, 45)
    out = StringIO()
    call_command('expire_emergency_requests', stdout=out)
    assert 'Expired 1 requests older than 30 min' in out.getvalue()
    req.refresh_from_db()
    assert req.status == EmergencyRequest.STATUS_EXPIRED


def test_expire_command_minutes_option(patient_user):
    req = make_request(patient_user)
    age(req, 45)
    out = StringIO()
    call_command('expire_emergency_requests', '--minutes', '120', stdout=out)
    assert 'Expired 0 requests' in out.getvalue()
    req.refresh_from_db()
    assert req.is_live


def test_expire_command_rejects_non_positive_minutes():
    with pytest.raises(CommandError):
        call_command('expire_emergency_requests', '--minutes', '0')


def test_expiry_publishes_update(patient_user, monkeypatch, django_capture_on_commit_callbacks):
    from nursing import signals
    published = []
    monkeypatch.setattr(signals, 'publish_change', lambda *a, **kw: published.append(kw))
    req = make_request(patient_user)
    age(req, 120)

    with django_capture_on_commit_callbacks(execute=True):
        expire_stale_requests(timedelta(minutes=60))
    assert published[-1]['new']['status'] == 'expired'
    assert published[-1]['old']['status'] == 'live'
