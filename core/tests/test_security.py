import datetime

import pytest
from django.core.management import call_command
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditEvent, User
from core.services.sms import LoggingSmsGateway, TwilioSmsGateway, get_sms_gateway, normalize_mobile_number

pytestmark = pytest.mark.django_db


@pytest.fixture
def staff(db):
    user = User.objects.create_user(username='staff1', is_staff=True)
    client = APIClient()
    client.force_authenticate(user)
    return client


def test_admin_endpoints_require_staff(citizen_api, citizen):
    r = citizen_api.post(reverse('admin-identity-unlock', args=[citizen.id]))
    assert r.status_code == 403
    r = citizen_api.get(reverse('admin-identities'))
    assert r.status_code == 403


def test_staff_deactivates_and_reactivates(staff, citizen):
    r = staff.post(reverse('admin-identity-status', args=[citizen.id]), {'active': False}, format='json')
    assert r.status_code == 200
    assert r.data['identity']['isActive'] is False
    citizen.refresh_from_db()
    assert citizen.is_active is False
    assert AuditEvent.objects.filter(action='identity_deactivate', object_id=citizen.id).exists()

    r = staff.post(reverse('admin-identity-status', args=[citizen.id]), {'active': True}, format='json')
    citizen.refresh_from_db()
    assert citizen.is_active is True


def test_staff_unlocks(staff, citizen):
    citizen.login_failure_count = 5
    citizen.locked_until = timezone.now() + datetime.timedelta(hours=2)
    citizen.save()

    r = staff.get(reverse('admin-identities'), {'locked': 'true'})
    assert r.data['pagination']['total'] == 1
    assert r.data['identities'][0]['isLocked'] is True
    assert r.data['identities'][0]['mobileNumber'] == '987*****10'

    r = staff.post(reverse('admin-identity-unlock', args=[citizen.id]))
    assert r.status_code == 200
    citizen.refresh_from_db()
    assert citizen.locked_until is None
    assert citizen.login_failure_count == 0


def test_status_requires_boolean(staff, citizen):
    r = staff.post(reverse('admin-identity-status', args=[citizen.id]), {}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'VALIDATION_ERROR'


def test_unknown_identity_is_not_found(staff):
    r = staff.post(reverse('admin-identity-unlock', args=[999999]))
    assert r.status_code == 404


def test_unverified_identity_cannot_request_login(api, gate):
    User.objects.create_user(username='pending', mobile_number='9000000001', national_id='100000000001')
    r = api.post(reverse('send-otp-login'), {'nationalIdNumber': '100000000001'}, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'USER_NOT_VERIFIED'


def test_otp_never_echoed_when_delivery_succeeds(api, gate, sms, citizen):
    gate.expose_challenge_code = True
    r = api.post(reverse('send-otp-login'), {'nationalIdNumber': citizen.national_id}, format='json')
    assert r.status_code == 200
    assert 'devOtp' not in r.data
    assert sms.last_code() not in str(r.data)


def test_request_id_header_is_echoed(api):
    r = api.get(reverse('health-check'), HTTP_X_REQUEST_ID='req-123')
    assert r['X-Request-ID'] == 'req-123'
    assert api.get(reverse('health-check'))['X-Request-ID']


def test_unhandled_error_is_rendered_as_server_error(citizen_api, monkeypatch):
    from core.views import dashboard

    def boom(user):
        raise RuntimeError('database on fire')

    monkeypatch.setattr(dashboard, 'dashboard', boom)
    r = citizen_api.get(reverse('dashboard'))
    assert r.status_code == 500
    assert r.data == {'ok': False, 'error': {'code': 'SERVER_ERROR', 'message': 'Server error occurred. Please try again.'}}


# ---------------------------------------------------------------------
# SMS gateway
# ---------------------------------------------------------------------
def test_normalize_mobile_number():
    assert normalize_mobile_number('9876543210') == '+919876543210'
    assert normalize_mobile_number('98765 43210') == '+919876543210'
    assert normalize_mobile_number('+447911123456') == '+447911123456'
    assert normalize_mobile_number('9876543210', country_code='+1') == '+19876543210'


def test_twilio_gateway_without_credentials_reports_config_missing():
    gw = TwilioSmsGateway(account_sid='', auth_token='', from_number='', messaging_service_sid='')
    assert gw.is_configured() is False
    result = gw.send('9876543210', 'hello')
    assert result.success is False
    assert result.error['code'] == 'CONFIG_MISSING'


def test_twilio_gateway_sends_normalized_number(monkeypatch):
    calls = {}

    class FakeMessages:
        def create(self, **kwargs):
            calls.update(kwargs)
            return type('Msg', (), {'sid': 'SM123', 'status': 'queued'})()

    class FakeClient:
        messages = FakeMessages()

    gw = TwilioSmsGateway(account_sid='AC1', auth_token='t', from_number='+15005550006', messaging_service_sid='')
    gw._client = FakeClient()
    result = gw.send('9876543210', 'Your OTP is: 123456')
    assert result.success and result.message_sid == 'SM123'
    assert calls == {'to': '+919876543210', 'body': 'Your OTP is: 123456', 'from_': '+15005550006'}


def test_twilio_error_becomes_failed_delivery():
    from twilio.base.exceptions import TwilioRestException

    class FailingMessages:
        def create(self, **kwargs):
            raise TwilioRestException(400, 'https://api.twilio.com', msg='Invalid To number', code=21211)

    class FakeClient:
        messages = FailingMessages()

    gw = TwilioSmsGateway(account_sid='AC1', auth_token='t', from_number='', messaging_service_sid='MG1')
    gw._client = FakeClient()
    result = gw.send('9876543210', 'x')
    assert result.success is False
    assert result.error == {'code': 21211, 'message': 'Invalid To number'}


def test_gateway_backend_is_configurable(settings):
    settings.SMS_GATEWAY = 'core.services.sms.LoggingSmsGateway'
    assert isinstance(get_sms_gateway(), LoggingSmsGateway)


# ---------------------------------------------------------------------
# Management commands
# ---------------------------------------------------------------------
def test_seed_demo_identity_is_idempotent():
    call_command('seed_demo_identity')
    call_command('seed_demo_identity')
    user = User.objects.get(national_id='314619230735')
    assert user.is_verified
    assert user.health_records.count() == 2


def test_identity_report_unlocks(citizen, capsys):
    citizen.locked_until = timezone.now() + datetime.timedelta(hours=1)
    citizen.login_failure_count = 5
    citizen.save()
    call_command('identity_report', '--locked')
    assert '1 identities' in capsys.readouterr().out
    call_command('identity_report', '--unlock', citizen.national_id)
    citizen.refresh_from_db()
    assert citizen.locked_until is None
    assert citizen.login_failure_count == 0
