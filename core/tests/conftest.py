from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from core.models import User
from core.services import requests as engine

PASSWORD = 'P@ssw0rd1'


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttle counters and dashboard payloads live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def _no_push(settings):
    settings.NOTIFY_PUSH_ENABLE = False


@pytest.fixture
def make_user(db):
    def _make(username, role, verification=User.VERIFICATION_VERIFIED, **extra):
        return User.objects.create_user(
            username=username, password=PASSWORD, role=role, verification_status=verification, **extra
        )
    return _make


@pytest.fixture
def patient(make_user):
    return make_user('p1', User.ROLE_PATIENT, first_name='Pat')


@pytest.fixture
def other_patient(make_user):
    return make_user('p2', User.ROLE_PATIENT)


@pytest.fixture
def nurse(make_user):
    return make_user('n1', User.ROLE_NURSE, first_name='Nora')


@pytest.fixture
def nurse2(make_user):
    return make_user('n2', User.ROLE_NURSE)


@pytest.fixture
def unverified_nurse(make_user):
    return make_user('n3', User.ROLE_NURSE, User.VERIFICATION_PENDING)


@pytest.fixture
def admin(make_user):
    return make_user('a1', User.ROLE_ADMIN)


@pytest.fixture
def make_request(patient):
    def _make(owner=None, **fields):
        data = {
            'title': 'Post-surgery wound care',
            'description': 'Daily dressing change for two weeks',
            'service_type': 'wound_care',
            'address': '12 Harbour Road, Flat 3',
            'budget': Decimal('200.00'),
        }
        data.update(fields)
        return engine.create_request(owner or patient, **data)
    return _make


@pytest.fixture
def open_request(make_request):
    return make_request()


@pytest.fixture
def client_for():
    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _client
