"""
API error types and the unified exception handler.

Every failure leaves the API as ``{'ok': False, 'error': {'code', 'message', ...}}``.
Identity gate errors carry a machine-readable ``code`` and may add extra
fields (remaining attempts, unlock time) to the error body.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class IdentityGateError(Exception):
    """Base class for failures reported by the identity verification gate."""
    code = 'IDENTITY_ERROR'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Identity verification failed.'

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def as_payload(self) -> Dict[str, Any]:
        return {'code': self.code, 'message': self.message, **self.extra}


class InvalidInput(IdentityGateError):
    code = 'VALIDATION_ERROR'
    default_message = 'Invalid input.'


class DuplicateIdentity(IdentityGateError):
    code = 'DUPLICATE_IDENTITY'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'User already exists with this mobile number or national ID number.'


class SessionNotFound(IdentityGateError):
    code = 'SESSION_NOT_FOUND'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Registration session not found. Please request OTP again.'


class SessionExpired(IdentityGateError):
    code = 'SESSION_EXPIRED'
    default_message = 'OTP has expired. Please request a new one.'


class InvalidCode(IdentityGateError):
    code = 'INVALID_CODE'
    default_message = 'Invalid OTP.'


class TooManyAttempts(IdentityGateError):
    code = 'TOO_MANY_ATTEMPTS'
    default_message = 'Too many failed attempts. Please request OTP again.'


class IdentityNotFound(IdentityGateError):
    code = 'USER_NOT_FOUND'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'User not found with this national ID number. Please register first.'


class NotVerified(IdentityGateError):
    code = 'USER_NOT_VERIFIED'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'Please complete your registration first.'


class AccountDeactivated(IdentityGateError):
    code = 'ACCOUNT_DEACTIVATED'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'Account is deactivated. Please contact support.'


class AccountLocked(IdentityGateError):
    code = 'ACCOUNT_LOCKED'
    status_code = status.HTTP_423_LOCKED
    default_message = 'Account is temporarily locked due to too many failed attempts.'


class InvalidOrExpiredCode(IdentityGateError):
    code = 'INVALID_OTP'
    default_message = 'Invalid or expired OTP.'


class DeliveryFailed(IdentityGateError):
    code = 'SMS_SEND_FAILED'
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = 'Failed to send OTP. Please try again.'


def _error(code: str, message: Any, http_status: int, headers=None, **extra: Any) -> Response:
    return Response({'ok': False, 'error': {'code': code, 'message': message, **extra}}, status=http_status, headers=headers)


def _headers(resp) -> Dict[str, str]:
    # keep WWW-Authenticate / Retry-After set by DRF
    return {k: v for k, v in resp.items()}


def api_exception_handler(exc, context):
    if isinstance(exc, IdentityGateError):
        return Response({'ok': False, 'error': exc.as_payload()}, status=exc.status_code)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view') if context else None
        logger.exception('unhandled error in %s', getattr(view, '__name__', None) or type(view).__name__, exc_info=exc)
        return _error('SERVER_ERROR', 'Server error occurred. Please try again.', 500)

    if isinstance(exc, exceptions.ValidationError):
        return _error('VALIDATION_ERROR', 'Validation failed.', resp.status_code, headers=_headers(resp), fields=resp.data)

    # normalize response
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    code = getattr(exc, 'default_code', None) or 'api_error'
    return _error(str(code).upper(), detail, resp.status_code, headers=_headers(resp))
