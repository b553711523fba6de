import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from nursing.models import EmergencyRequest, NurseProfile

User = get_user_model()

# Karachi city centre and a point ~5.5 km north of it
KARACHI = (24.8607, 67.0011)
NORTH_5KM = (24.9100, 67.0011)


@pytest.fixture(autouse=True)
def in_memory_channel_layer(settings):
    settings.CHANNEL_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}
    from channels.layers import channel_layers
    channel_layers.backends.clear()
    yield
    channel_layers.backends.clear()


@pytest.fixture
def patient_user(db):
    return User.objects.create_user(username='patient1', password='P@ssw0rd1', first_name='Ayesha')


@pytest.fixture
def other_patient(db):
    return User.objects.create_user(username='patient2', password='P@ssw0rd1')


def make_nurse(username, status=NurseProfile.STATUS_APPROVED, **kwargs):
    user = User.objects.create_user(username=username, password='P@ssw0rd1')
    fields = {'full_name': username.title(), 'city': 'Karachi', 'per_visit_fee': 1500}
    fields.update(kwargs)
    return NurseProfile.objects.create(user=user, status=status, **fields)


@pytest.fixture
def nurse(db):
    return make_nurse('nurse1', home_visit_radius=10)


@pytest.fixture
def other_nurse(db):
    return make_nurse('nurse2')


@pytest.fixture
def pending_nurse(db):
    return make_nurse('nurse3', status=NurseProfile.STATUS_PENDING)


def make_request(patient, lat=KARACHI[0], lng=KARACHI[1], **kwargs):
    fields = {
        'patient_name': 'Ayesha Khan',
        'location_address': 'Block 5, Clifton',
        'city': 'Karachi',
        'services_needed': ['iv_cannula', 'injection', 'vital_signs'],
        'urgency': EmergencyRequest.URGENCY_CRITICAL,
        'patient_offer_price': 2500,
    }
    fields.update(kwargs)
    return EmergencyRequest.objects.create(patient=patient, location_lat=lat, location_lng=lng, **fields)


@pytest.fixture
def live_request(patient_user):
    return make_request(patient_user)


@pytest.fixture
def api():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client


@pytest.fixture(autouse=True)
def clear_throttle_cache():
    from django.core.cache import cache
    cache.clear()
    yield
