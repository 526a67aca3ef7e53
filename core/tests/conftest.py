import datetime
import re

import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import User
from core.services import identity
from core.services.identity import IdentityGate
from core.services.registration_sessions import RegistrationSessionStore
from core.services.sms import DeliveryResult, SmsGateway

MOBILE = '9876543210'
NATIONAL_ID = '123456789012'


class FrozenClock:
    def __init__(self, now=None):
        self.now = now or timezone.now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += datetime.timedelta(**kwargs)


class FakeSms(SmsGateway):
    """Records every message; ``fail = True`` makes delivery fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, text):
        self.sent.append((to, text))
        if self.fail:
            return DeliveryResult(False, error={'code': 'TEST_FAILURE', 'message': 'delivery disabled'})
        return DeliveryResult(True, message_sid=f'SM{len(self.sent)}')

    def last_code(self):
        return re.search(r'is: (\d+)', self.sent[-1][1]).group(1)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    # throttle counters live in the cache; the gate holds the session store
    cache.clear()
    monkeypatch.setattr(identity, '_gate', None)
    yield
    cache.clear()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def gate(monkeypatch, clock, sms):
    g = IdentityGate(
        sessions=RegistrationSessionStore(ttl=datetime.timedelta(minutes=10), max_attempts=3, clock=clock),
        sms=sms,
        clock=clock,
    )
    monkeypatch.setattr(identity, '_gate', g)
    return g


@pytest.fixture
def citizen(db):
    return User.objects.create_user(
        username='hc-citizen',
        mobile_number=MOBILE,
        national_id=NATIONAL_ID,
        first_name='Ravi',
        last_name='Kumar',
        is_verified=True,
    )


@pytest.fixture
def api():
    return APIClient()


@pytest.fixture
def citizen_api(citizen):
    client = APIClient()
    client.force_authenticate(citizen)
    return client
