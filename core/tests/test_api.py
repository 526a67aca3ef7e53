"""
HTTP-level tests for the identity verification endpoints.

The process-wide gate is replaced by one wired to a fake SMS gateway and
a frozen clock (see ``conftest.gate``), so codes are read from the
messages the gateway recorded.
"""
import datetime

import pytest
from django.urls import reverse
from rest_framework.test import APIClient

from core.auth_views import send_otp_login, send_otp_registration, verify_otp_login
from core.models import User
from core.services.tokens import issue_session_token

pytestmark = pytest.mark.django_db

MOBILE = '9876543210'
NATIONAL_ID = '123456789012'


def _register(api, sms):
    r = api.post(reverse('send-otp-registration'),
                 {'mobileNumber': MOBILE, 'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.status_code == 200, r.data
    return api.post(reverse('verify-otp-registration'), {
        'mobileNumber': MOBILE,
        'otp': sms.last_code(),
        'firstName': 'Ravi',
        'lastName': 'Kumar',
        'dateOfBirth': '1990-05-17',
        'gender': 'Male',
        'bloodGroup': 'B+',
        'emergencyContact': {'name': 'Sita', 'relationship': 'Spouse', 'mobileNumber': '9123456780'},
    }, format='json')


def test_register_then_use_token(api, gate, sms):
    r = api.post(reverse('send-otp-registration'),
                 {'mobileNumber': MOBILE, 'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.data['ok'] is True
    assert r.data['code'] == 'OTP_SENT'
    assert r.data['mobileNumber'] == '987*****10'
    assert r.data['expiresIn'] == '10 minutes'
    assert 'devOtp' not in r.data
    assert sms.sent[-1][0] == MOBILE

    r = api.post(reverse('verify-otp-registration'), {
        'mobileNumber': MOBILE, 'otp': sms.last_code(), 'firstName': 'Ravi', 'lastName': 'Kumar',
        'dateOfBirth': '1990-05-17', 'gender': 'Male',
    }, format='json')
    assert r.status_code == 201, r.data
    assert r.data['code'] == 'REGISTRATION_SUCCESS'
    assert r.data['user']['isVerified'] is True
    user = User.objects.get(mobile_number=MOBILE)
    assert user.national_id == NATIONAL_ID
    assert user.date_of_birth == datetime.date(1990, 5, 17)

    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['token']}")
    r = client.get(reverse('profile'))
    assert r.status_code == 200
    assert r.data['user']['nationalIdNumber'] == NATIONAL_ID


def test_registration_profile_fields_are_stored(api, gate, sms):
    r = _register(api, sms)
    assert r.status_code == 201, r.data
    user = User.objects.get(mobile_number=MOBILE)
    assert user.blood_group == 'B+'
    assert user.emergency_contact['mobileNumber'] == '9123456780'


def test_registration_names_drop_markup(api, gate, sms):
    api.post(reverse('send-otp-registration'), {'mobileNumber': MOBILE, 'nationalIdNumber': NATIONAL_ID}, format='json')
    r = api.post(reverse('verify-otp-registration'), {
        'mobileNumber': MOBILE, 'otp': sms.last_code(), 'firstName': '<i>Ravi</i>', 'lastName': '<b>Kumar</b>',
        'dateOfBirth': '1990-05-17', 'gender': 'Male',
    }, format='json')
    assert r.status_code == 201, r.data
    user = User.objects.get(mobile_number=MOBILE)
    assert (user.first_name, user.last_name) == ('Ravi', 'Kumar')


def test_wrong_registration_code_reports_remaining_attempts(api, gate, sms):
    api.post(reverse('send-otp-registration'), {'mobileNumber': MOBILE, 'nationalIdNumber': NATIONAL_ID}, format='json')
    code = sms.last_code()
    r = api.post(reverse('verify-otp-registration'), {
        'mobileNumber': MOBILE, 'otp': '000000' if code != '000000' else '111111', 'firstName': 'Ravi',
        'lastName': 'Kumar', 'dateOfBirth': '1990-05-17', 'gender': 'Male',
    }, format='json')
    assert r.status_code == 400
    assert r.data == {'ok': False, 'error': {
        'code': 'INVALID_CODE', 'message': 'Invalid OTP.', 'attemptsRemaining': 2,
    }}


def test_verify_without_session_is_not_found(api, gate):
    r = api.post(reverse('verify-otp-registration'), {
        'mobileNumber': MOBILE, 'otp': '123456', 'firstName': 'Ravi', 'lastName': 'Kumar',
        'dateOfBirth': '1990-05-17', 'gender': 'Male',
    }, format='json')
    assert r.status_code == 404
    assert r.data['error']['code'] == 'SESSION_NOT_FOUND'


def test_malformed_registration_request_is_validation_error(api, gate, sms):
    r = api.post(reverse('send-otp-registration'), {'mobileNumber': '12345', 'nationalIdNumber': 'abc'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'VALIDATION_ERROR'
    assert set(r.data['error']['fields']) == {'mobileNumber', 'nationalIdNumber'}
    assert sms.sent == []


def test_duplicate_registration_is_conflict(api, gate, citizen):
    r = api.post(reverse('send-otp-registration'),
                 {'mobileNumber': citizen.mobile_number, 'nationalIdNumber': '999999999999'}, format='json')
    assert r.status_code == 409
    assert r.data['error']['code'] == 'DUPLICATE_IDENTITY'


def test_delivery_failure_is_bad_gateway(api, gate, sms):
    sms.fail = True
    r = api.post(reverse('send-otp-registration'),
                 {'mobileNumber': MOBILE, 'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.status_code == 502
    assert r.data['error']['code'] == 'SMS_SEND_FAILED'


def test_delivery_failure_in_diagnostic_mode_returns_code(api, gate, sms):
    gate.expose_challenge_code = True
    sms.fail = True
    r = api.post(reverse('send-otp-registration'),
                 {'mobileNumber': MOBILE, 'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.status_code == 200
    assert r.data['code'] == 'OTP_SENT_DEV'
    assert r.data['devOtp'] == gate.sessions.get(MOBILE).code


def test_login_flow(api, gate, sms, citizen):
    r = api.post(reverse('send-otp-login'), {'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.status_code == 200
    assert r.data['mobileNumber'] == '987*****10'
    assert r.data['fullName'] == 'Ravi Kumar'

    r = api.post(reverse('verify-otp-login'), {'nationalIdNumber': NATIONAL_ID, 'otp': sms.last_code()}, format='json')
    assert r.status_code == 200
    assert r.data['code'] == 'LOGIN_SUCCESS'
    assert r.data['message'] == 'Welcome back, Ravi! Login successful.'
    assert r.data['token'] and r.data['refresh']


def test_login_unknown_identity(api, gate):
    r = api.post(reverse('send-otp-login'), {'nationalIdNumber': '999999999999'}, format='json')
    assert r.status_code == 404
    assert r.data['error']['code'] == 'USER_NOT_FOUND'


def test_login_lockout_over_http(api, gate, sms, citizen):
    for n in range(5):
        api.post(reverse('send-otp-login'), {'nationalIdNumber': NATIONAL_ID}, format='json')
        code = sms.last_code()
        r = api.post(reverse('verify-otp-login'),
                     {'nationalIdNumber': NATIONAL_ID, 'otp': '000000' if code != '000000' else '111111'},
                     format='json')
        assert r.status_code == 400
        assert r.data['error']['code'] == 'INVALID_OTP'
        assert r.data['error']['remainingAttempts'] == 4 - n

    r = api.post(reverse('send-otp-login'), {'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.status_code == 423
    assert r.data['error']['code'] == 'ACCOUNT_LOCKED'
    assert r.data['error']['unlockTime']


def test_deactivated_identity_cannot_log_in(api, gate, citizen):
    citizen.is_active = False
    citizen.save()
    r = api.post(reverse('send-otp-login'), {'nationalIdNumber': NATIONAL_ID}, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'ACCOUNT_DEACTIVATED'


def test_token_of_unverified_identity_is_refused(api, db):
    user = User.objects.create_user(username='pending', mobile_number='9000000001', national_id='100000000001')
    tokens = issue_session_token(user)
    api.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
    r = api.get(reverse('profile'))
    assert r.status_code == 401
    assert r.data['ok'] is False


def test_token_claims(citizen):
    from rest_framework_simplejwt.tokens import AccessToken
    tokens = issue_session_token(citizen, {'mobileNumber': citizen.mobile_number, 'isVerified': True})
    access = AccessToken(tokens['access'])
    assert access['mobileNumber'] == citizen.mobile_number
    assert access['isVerified'] is True
    assert str(access['user_id']) == str(citizen.pk)


def test_profile_update(citizen_api, citizen):
    r = citizen_api.put(reverse('users-profile'), {
        'firstName': '<b>Ravi</b>',
        'address': {'city': 'Kochi', 'district': 'Ernakulam', 'pincode': '682001'},
        'allergies': ['Penicillin'],
    }, format='json')
    assert r.status_code == 200, r.data
    assert r.data['user']['firstName'] == 'Ravi'
    citizen.refresh_from_db()
    assert citizen.first_name == 'Ravi'
    assert citizen.address['city'] == 'Kochi'
    assert citizen.allergies == ['Penicillin']


def test_refresh_and_logout(api, citizen):
    tokens = issue_session_token(citizen)
    r = api.post(reverse('token-refresh'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['token']

    api.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
    r = api.post(reverse('logout'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['blacklisted'] == 1

    r = APIClient().post(reverse('token-refresh'), {'refresh': tokens['refresh']}, format='json')
    assert r.status_code == 401


def test_otp_endpoints_are_throttled_by_scope():
    assert send_otp_registration.cls.throttle_scope == 'otp_request'
    assert send_otp_login.cls.throttle_scope == 'otp_request'
    assert verify_otp_login.cls.throttle_scope == 'otp_verify'


def test_health_endpoints(api):
    assert api.get(reverse('healthz')).status_code == 200
    r = api.get(reverse('health-check'))
    assert r.status_code == 200
    assert r.json()['status'] == 'OK'


def test_config_check_reports_sms_backend(api, settings):
    settings.SMS_GATEWAY = 'core.services.sms.LoggingSmsGateway'
    r = api.get(reverse('config-check'))
    assert r.status_code == 200
    assert r.data['config']['sms']['configured'] is True
    assert r.data['config']['database']['connected'] is True
