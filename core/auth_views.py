"""
Authentication views.

The four one-time-code endpoints map 1:1 onto the operations of
:class:`core.services.identity.IdentityGate`; gate errors propagate to
``core.exceptions.api_exception_handler`` which renders the error
envelope.  Profile, token refresh, logout and the configuration check
live here as well.  By isolating these views from the authentication
class (see ``core.authentication``) we prevent circular imports when
Django REST framework initialises authentication classes.
"""
from __future__ import annotations

import logging

from django.conf import settings
from django.db import connections
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView

from core.serializers.auth import (
    LoginChallengeSerializer,
    LoginConfirmSerializer,
    LogoutSerializer,
    ProfileUpdateSerializer,
    RegistrationChallengeSerializer,
    RegistrationConfirmSerializer,
    user_payload,
)
from core.services.audit import client_ip, log_action
from core.services.identity import ChallengeIssued, get_identity_gate
from core.services.sms import get_sms_gateway

logger = logging.getLogger(__name__)


def _challenge_response(issued: ChallengeIssued, message: str, **extra) -> Response:
    payload = {
        'ok': True,
        'code': issued.code,
        'message': message,
        'mobileNumber': issued.masked_mobile,
        'expiresIn': f"{issued.expires_in_minutes} minutes",
        **extra,
    }
    if issued.exposed:
        payload['message'] = 'OTP generated (DEV MODE - SMS not sent)'
        payload['devOtp'] = issued.dev_code
    return Response(payload, status=200)


# ---------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def send_otp_registration(request):
    s = RegistrationChallengeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    issued = get_identity_gate().request_registration_challenge(vd['mobileNumber'], vd['nationalIdNumber'])
    return _challenge_response(issued, 'OTP sent successfully')

send_otp_registration.cls.throttle_scope = 'otp_request'


@api_view(['POST'])
@permission_classes([AllowAny])
def verify_otp_registration(request):
    s = RegistrationConfirmSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    granted = get_identity_gate().confirm_registration(vd['mobileNumber'], vd['otp'], s.profile_fields())
    return Response({
        'ok': True,
        'code': 'REGISTRATION_SUCCESS',
        'message': 'Registration completed successfully',
        'token': granted.tokens['access'],
        'refresh': granted.tokens['refresh'],
        'user': user_payload(granted.user),
    }, status=201)

verify_otp_registration.cls.throttle_scope = 'otp_verify'


# ---------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def send_otp_login(request):
    s = LoginChallengeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    issued = get_identity_gate().request_login_challenge(s.validated_data['nationalIdNumber'])
    return _challenge_response(
        issued, 'OTP sent successfully to your registered mobile number', fullName=issued.display_name,
    )

send_otp_login.cls.throttle_scope = 'otp_request'


@api_view(['POST'])
@permission_classes([AllowAny])
def verify_otp_login(request):
    s = LoginConfirmSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    granted = get_identity_gate().confirm_login(vd['nationalIdNumber'], vd['otp'])
    user = granted.user
    logger.info('identity %s logged in from %s', user.pk, client_ip(request))
    return Response({
        'ok': True,
        'code': 'LOGIN_SUCCESS',
        'message': f"Welcome back, {user.first_name or user.display_name}! Login successful.",
        'token': granted.tokens['access'],
        'refresh': granted.tokens['refresh'],
        'user': user_payload(user),
    }, status=200)

verify_otp_login.cls.throttle_scope = 'otp_verify'


# ---------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------
@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def profile_view(request):
    user = request.user
    if request.method == 'GET':
        return Response({'ok': True, 'user': user_payload(user, full=True)})

    s = ProfileUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    fields = s.profile_fields()
    for name, value in fields.items():
        setattr(user, name, value)
    if fields:
        user.save(update_fields=[*fields.keys(), 'updated_at'])
        log_action(user=user, action='profile_update', object_type='user', object_id=user.id,
                   detail={'fields': sorted(fields.keys())})
    return Response({'ok': True, 'message': 'Profile updated successfully', 'user': user_payload(user, full=True)})


# ---------------------------------------------------------------------
# JWT: refresh & logout
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from refresh token."""
    view = TokenRefreshView.as_view()
    resp = view(request._request)
    if resp.status_code != 200:
        # already rendered by api_exception_handler
        return Response(resp.data, status=resp.status_code)
    data = dict(resp.data)
    if 'access' in data:
        data['token'] = data.pop('access')
    return Response({'ok': True, **data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist current user's refresh tokens (all or a given one)."""
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    refresh = s.validated_data.get('refresh')
    count = 0
    if refresh:
        try:
            token = RefreshToken(refresh)
        except TokenError as e:
            raise ValidationError({'refresh': [str(e)]})
        if str(token.get('user_id')) != str(request.user.pk):
            raise ValidationError({'refresh': ['token does not belong to this user']})
        token.blacklist()
        count = 1
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id,
               detail={'blacklisted': count})
    return Response({'ok': True, 'message': 'Logout successful', 'blacklisted': count})


# ---------------------------------------------------------------------
# Configuration check
# ---------------------------------------------------------------------
@api_view(['GET'])
@permission_classes([AllowAny])
def config_check(request):
    config = {
        'database': {'status': 'unknown', 'connected': False},
        'sms': {'status': 'unknown', 'configured': False, 'backend': settings.SMS_GATEWAY},
        'jwt': {'configured': bool(settings.SIMPLE_JWT.get('SIGNING_KEY'))
                and settings.SIMPLE_JWT.get('SIGNING_KEY') != 'replace-me-with-a-secure-secret-key'},
    }
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            config['database']['connected'] = c.fetchone()[0] == 1
        config['database']['status'] = 'connected' if config['database']['connected'] else 'disconnected'
    except Exception as e:  # surfaced in the payload
        logger.warning('config-check database check failed: %s', e)
        config['database']['status'] = 'error'

    config['sms']['configured'] = get_sms_gateway().is_configured()
    config['sms']['status'] = 'configured' if config['sms']['configured'] else 'missing_credentials'

    recommendations = {}
    if not config['database']['connected']:
        recommendations['database'] = 'Check DATABASE_URL / MYSQL_* settings and network access'
    if not config['sms']['configured']:
        recommendations['sms'] = 'Configure Twilio credentials for SMS functionality'
    if not config['jwt']['configured']:
        recommendations['jwt'] = 'Set JWT_SECRET or SECRET_KEY environment variable'

    ready = config['database']['connected'] and config['sms']['configured'] and config['jwt']['configured']
    return Response({
        'ok': True,
        'message': 'System configuration check',
        'status': 'ready' if ready else 'needs_configuration',
        'config': config,
        'recommendations': recommendations,
        'exposeChallengeCode': settings.OTP_EXPOSE_CODE_IN_RESPONSE,
    })
