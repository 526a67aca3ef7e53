"""
Identity verification gate.

All creation of new identities and all login sessions pass through a
time-boxed, attempt-limited one-time code challenge:

* registration keeps the candidate in a :class:`RegistrationSessionStore`
  until the code is answered, then creates a verified ``User``;
* login keeps the pending code on the ``User`` row itself and counts
  failures toward a temporary lock.

Lock expiry is evaluated lazily: a lapsed lock is cleared by the next
request or confirmation for that identity, never by a background job.
Failures raise :class:`core.exceptions.IdentityGateError` subclasses.
"""
from __future__ import annotations

import datetime
import logging
import re
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from core.exceptions import (
    AccountDeactivated,
    AccountLocked,
    DeliveryFailed,
    DuplicateIdentity,
    IdentityNotFound,
    InvalidCode,
    InvalidInput,
    InvalidOrExpiredCode,
    NotVerified,
    SessionExpired,
    SessionNotFound,
    TooManyAttempts,
)
from core.models import User, generate_username
from core.services.audit import log_action
from core.services.registration_sessions import CheckOutcome, RegistrationSessionStore
from core.services.sms import SmsGateway, get_sms_gateway, login_message, mask_for_log, registration_message
from core.services.tokens import issue_session_token

logger = logging.getLogger(__name__)

MOBILE_RE = re.compile(r'[6-9][0-9]{9}')
NATIONAL_ID_RE = re.compile(r'[0-9]{12}')

OTP_SENT = 'OTP_SENT'
OTP_SENT_DEV = 'OTP_SENT_DEV'

# Profile columns a registration may fill in
PROFILE_FIELDS = (
    'first_name', 'last_name', 'email', 'date_of_birth', 'gender', 'address',
    'emergency_contact', 'blood_group', 'allergies', 'current_medications', 'work_details',
)


def generate_numeric_code(length: int = 6) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def mask_mobile(mobile_number: str) -> str:
    """Keep the first 3 and last 2 digits, hide the rest."""
    digits = str(mobile_number or '')
    if len(digits) < 6:
        return '*' * len(digits)
    return f"{digits[:3]}{'*' * (len(digits) - 5)}{digits[-2:]}"


def mask_national_id(national_id: str) -> str:
    digits = str(national_id or '')
    if len(digits) < 4:
        return '****-****-****'
    return f"****-****-{digits[-4:]}"


@dataclass
class ChallengeIssued:
    code: str
    masked_mobile: str
    expires_in_minutes: int
    display_name: Optional[str] = None
    dev_code: Optional[str] = None

    @property
    def exposed(self) -> bool:
        return self.dev_code is not None


@dataclass
class SessionGranted:
    user: User
    tokens: Dict[str, str] = field(default_factory=dict)
    created: bool = False


class IdentityGate:
    def __init__(
        self,
        sessions: RegistrationSessionStore,
        sms: SmsGateway,
        token_issuer: Callable[[User, Dict[str, Any]], Dict[str, str]] = issue_session_token,
        clock: Optional[Callable[[], datetime.datetime]] = None,
        code_factory: Optional[Callable[[], str]] = None,
        code_length: int = 6,
        expose_challenge_code: bool = False,
        otp_ttl: datetime.timedelta = datetime.timedelta(minutes=10),
        otp_max_attempts: int = 3,
        max_login_failures: int = 5,
        lock_duration: datetime.timedelta = datetime.timedelta(hours=2),
    ) -> None:
        self.sessions = sessions
        self.sms = sms
        self.token_issuer = token_issuer
        self.clock = clock or timezone.now
        self.code_length = code_length
        self.code_factory = code_factory or (lambda: generate_numeric_code(code_length))
        self.code_re = re.compile(rf'[0-9]{{{code_length}}}')
        self.expose_challenge_code = expose_challenge_code
        self.otp_ttl = otp_ttl
        self.otp_max_attempts = otp_max_attempts
        self.max_login_failures = max_login_failures
        self.lock_duration = lock_duration

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def request_registration_challenge(self, mobile_number: str, national_id: str) -> ChallengeIssued:
        self._require_mobile(mobile_number)
        self._require_national_id(national_id)

        if User.objects.filter(Q(mobile_number=mobile_number) | Q(national_id=national_id)).exists():
            raise DuplicateIdentity()

        code = self.code_factory()
        self.sessions.open(mobile_number, national_id, code)

        result = self.sms.send(mobile_number, registration_message(code))
        if not result.success:
            logger.error('registration OTP delivery to %s failed: %s', mask_for_log(mobile_number), result.error)
            if self.expose_challenge_code:
                logger.warning('exposing registration OTP in response for %s', mask_for_log(mobile_number))
                return self._issued(OTP_SENT_DEV, mobile_number, dev_code=code)
            self.sessions.discard(mobile_number)
            raise DeliveryFailed()

        logger.info('registration OTP sent to %s', mask_for_log(mobile_number))
        return self._issued(OTP_SENT, mobile_number)

    def confirm_registration(self, mobile_number: str, code: str, profile: Optional[Dict[str, Any]] = None) -> SessionGranted:
        self._require_mobile(mobile_number)
        self._require_code(code)

        outcome, session = self.sessions.check(mobile_number, code, secrets.compare_digest)
        if outcome is CheckOutcome.NOT_FOUND:
            raise SessionNotFound()
        if outcome is CheckOutcome.EXPIRED:
            raise SessionExpired()
        if outcome is CheckOutcome.EXHAUSTED:
            raise TooManyAttempts()
        if outcome is CheckOutcome.MISMATCH:
            raise InvalidCode(attemptsRemaining=self.sessions.max_attempts - session.attempts)

        fields = {k: v for k, v in (profile or {}).items() if k in PROFILE_FIELDS and v is not None}
        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    username=generate_username(),
                    mobile_number=mobile_number,
                    national_id=session.national_id,
                    is_verified=True,
                    **fields,
                )
        except IntegrityError:
            logger.warning('registration for %s collided with an existing identity', mask_for_log(mobile_number))
            raise DuplicateIdentity()

        log_action(user=user, action='register', object_type='user', object_id=user.id,
                   detail={'mobile': mask_mobile(mobile_number)})
        tokens = self.token_issuer(user, {'mobileNumber': user.mobile_number, 'isVerified': True})
        return SessionGranted(user=user, tokens=tokens, created=True)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------
    def request_login_challenge(self, national_id: str) -> ChallengeIssued:
        self._require_national_id(national_id)

        with transaction.atomic():
            user = self._locked_row(national_id)
            if not user.is_verified:
                raise NotVerified()
            self._check_active_and_unlocked(user)
            now = self.clock()
            code = self.code_factory()
            user.otp_code = code
            user.otp_expires_at = now + self.otp_ttl
            user.otp_attempts = 0
            user.save(update_fields=['otp_code', 'otp_expires_at', 'otp_attempts',
                                     'login_failure_count', 'locked_until', 'updated_at'])

        result = self.sms.send(user.mobile_number, login_message(code))
        if not result.success:
            logger.error('login OTP delivery to %s failed: %s', mask_for_log(user.mobile_number), result.error)
            if self.expose_challenge_code:
                logger.warning('exposing login OTP in response for %s', mask_for_log(user.mobile_number))
                return self._issued(OTP_SENT_DEV, user.mobile_number, display_name=user.display_name, dev_code=code)
            User.objects.filter(pk=user.pk, otp_code=code).update(otp_code=None, otp_expires_at=None, otp_attempts=0)
            raise DeliveryFailed()

        logger.info('login OTP sent to %s', mask_for_log(user.mobile_number))
        return self._issued(OTP_SENT, user.mobile_number, display_name=user.display_name)

    def confirm_login(self, national_id: str, code: str) -> SessionGranted:
        self._require_national_id(national_id)
        self._require_code(code)

        failure: Optional[InvalidOrExpiredCode] = None
        with transaction.atomic():
            user = self._locked_row(national_id)
            self._check_active_and_unlocked(user)
            now = self.clock()

            if self._pending_code_usable(user, now) and secrets.compare_digest(user.otp_code, code):
                user.clear_pending_otp()
                user.login_failure_count = 0
                user.locked_until = None
                user.last_login = now
                user.save(update_fields=['otp_code', 'otp_expires_at', 'otp_attempts', 'login_failure_count',
                                         'locked_until', 'last_login', 'updated_at'])
            else:
                failure = self._record_login_failure(user, now)

        # raised outside the atomic block so the counters stay committed
        if failure is not None:
            raise failure

        log_action(user=user, action='login', object_type='user', object_id=user.id, detail={'result': 'ok'})
        tokens = self.token_issuer(user, {'mobileNumber': user.mobile_number, 'isVerified': user.is_verified})
        return SessionGranted(user=user, tokens=tokens)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _issued(self, code: str, mobile_number: str, display_name: Optional[str] = None,
                dev_code: Optional[str] = None) -> ChallengeIssued:
        return ChallengeIssued(
            code=code,
            masked_mobile=mask_mobile(mobile_number),
            expires_in_minutes=int(self.otp_ttl.total_seconds() // 60),
            display_name=display_name,
            dev_code=dev_code,
        )

    def _locked_row(self, national_id: str) -> User:
        user = User.objects.select_for_update().filter(national_id=national_id).first()
        if user is None:
            raise IdentityNotFound()
        return user

    def _check_active_and_unlocked(self, user: User) -> None:
        """Refuse deactivated or locked identities; clear a lock that has lapsed."""
        if not user.is_active:
            raise AccountDeactivated()
        now = self.clock()
        if user.locked_until is not None:
            if user.locked_until > now:
                raise AccountLocked(unlockTime=user.locked_until.isoformat())
            user.locked_until = None
            user.login_failure_count = 0

    def _pending_code_usable(self, user: User, now: datetime.datetime) -> bool:
        return (
            user.otp_code is not None
            and user.otp_expires_at is not None
            and now <= user.otp_expires_at
            and user.otp_attempts < self.otp_max_attempts
        )

    def _record_login_failure(self, user: User, now: datetime.datetime) -> InvalidOrExpiredCode:
        if user.otp_code is not None:
            if not self._pending_code_usable(user, now):
                user.clear_pending_otp()
            else:
                user.otp_attempts += 1
                if user.otp_attempts >= self.otp_max_attempts:
                    user.clear_pending_otp()

        user.login_failure_count += 1
        locked = user.login_failure_count >= self.max_login_failures
        if locked:
            user.locked_until = now + self.lock_duration
        user.save(update_fields=['otp_code', 'otp_expires_at', 'otp_attempts',
                                 'login_failure_count', 'locked_until', 'updated_at'])

        log_action(user=user, action='login', object_type='user', object_id=user.id,
                   detail={'result': 'fail', 'failures': user.login_failure_count})
        if locked:
            logger.warning('identity %s locked until %s', user.pk, user.locked_until.isoformat())
            log_action(user=user, action='lockout', object_type='user', object_id=user.id,
                       detail={'until': user.locked_until.isoformat()})
        return InvalidOrExpiredCode(remainingAttempts=max(0, self.max_login_failures - user.login_failure_count))

    @staticmethod
    def _require_mobile(mobile_number: str) -> None:
        if not MOBILE_RE.fullmatch(str(mobile_number or '')):
            raise InvalidInput('Valid 10-digit mobile number required.')

    @staticmethod
    def _require_national_id(national_id: str) -> None:
        if not NATIONAL_ID_RE.fullmatch(str(national_id or '')):
            raise InvalidInput('Valid 12-digit national ID number required.')

    def _require_code(self, code: str) -> None:
        if not self.code_re.fullmatch(str(code or '')):
            raise InvalidInput(f'Valid {self.code_length}-digit OTP required.')


_gate: Optional[IdentityGate] = None
_gate_lock = threading.Lock()


def build_identity_gate() -> IdentityGate:
    ttl = datetime.timedelta(minutes=settings.OTP_TTL_MINUTES)
    return IdentityGate(
        sessions=RegistrationSessionStore(ttl=ttl, max_attempts=settings.OTP_MAX_ATTEMPTS),
        sms=get_sms_gateway(),
        code_length=settings.OTP_LENGTH,
        expose_challenge_code=settings.OTP_EXPOSE_CODE_IN_RESPONSE,
        otp_ttl=ttl,
        otp_max_attempts=settings.OTP_MAX_ATTEMPTS,
        max_login_failures=settings.LOGIN_MAX_FAILURES,
        lock_duration=datetime.timedelta(hours=settings.LOGIN_LOCK_HOURS),
    )


def get_identity_gate() -> IdentityGate:
    """Return the process-wide gate, building it from settings on first use."""
    global _gate
    if _gate is None:
        with _gate_lock:
            if _gate is None:
                _gate = build_identity_gate()
    return _gate


# ---------------------------------------------------------------------
# Administrative status changes
# ---------------------------------------------------------------------
def set_identity_active(user: User, active: bool, *, actor=None) -> User:
    """Activate or deactivate ``user``; deactivation also drops any pending code."""
    with transaction.atomic():
        user = User.objects.select_for_update().get(pk=user.pk)
        user.is_active = bool(active)
        if not user.is_active:
            user.clear_pending_otp()
        user.save(update_fields=['is_active', 'otp_code', 'otp_expires_at', 'otp_attempts', 'updated_at'])
    log_action(user=actor, action='identity_activate' if active else 'identity_deactivate',
               object_type='user', object_id=user.pk)
    return user


def unlock_identity(user: User, *, actor=None) -> User:
    """Clear a login lock and the failure counter."""
    with transaction.atomic():
        user = User.objects.select_for_update().get(pk=user.pk)
        user.locked_until = None
        user.login_failure_count = 0
        user.save(update_fields=['locked_until', 'login_failure_count', 'updated_at'])
    log_action(user=actor, action='identity_unlock', object_type='user', object_id=user.pk)
    return user
