"""
SMS delivery for one-time codes.

``get_sms_gateway()`` returns the backend named by ``settings.SMS_GATEWAY``:
``TwilioSmsGateway`` talks to the Twilio REST API, ``LoggingSmsGateway``
only writes the message to the log for local development.  Gateways never
raise on delivery problems; they report them through ``DeliveryResult``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.conf import settings
from django.utils.module_loading import import_string
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

logger = logging.getLogger(__name__)

_LOCAL_MOBILE = re.compile(r'^[6-9]\d{9}$')
_E164 = re.compile(r'^\+\d{10,15}$')


@dataclass
class DeliveryResult:
    success: bool
    message_sid: Optional[str] = None
    error: Dict[str, Any] = field(default_factory=dict)


def normalize_mobile_number(mobile_number: str, country_code: Optional[str] = None) -> str:
    """Return a dispatchable E.164 number.

    E.164 input is returned untouched, a bare 10-digit local mobile gets
    the default country code.  Anything else is passed through with
    separators stripped and left for the provider to reject.
    """
    raw = re.sub(r'[\s\-()]', '', str(mobile_number or ''))
    if _E164.match(raw):
        return raw
    if _LOCAL_MOBILE.match(raw):
        return f"{country_code or settings.SMS_DEFAULT_COUNTRY_CODE}{raw}"
    return raw


def mask_for_log(number: str) -> str:
    digits = str(number or '')
    if len(digits) <= 4:
        return '***'
    return f"{digits[:3]}***{digits[-2:]}"


def registration_message(code: str) -> str:
    return (f"Your OTP for {settings.SMS_SENDER_NAME} registration is: {code}. "
            f"Valid for {settings.OTP_TTL_MINUTES} minutes.")


def login_message(code: str) -> str:
    return (f"Your OTP for {settings.SMS_SENDER_NAME} login is: {code}. "
            f"Valid for {settings.OTP_TTL_MINUTES} minutes.")


class SmsGateway:
    def send(self, to: str, text: str) -> DeliveryResult:  # pragma: no cover - interface
        raise NotImplementedError

    def is_configured(self) -> bool:
        return True


class TwilioSmsGateway(SmsGateway):
    """Send messages through Twilio, from a number or a messaging service."""

    def __init__(self, account_sid: Optional[str] = None, auth_token: Optional[str] = None,
                 from_number: Optional[str] = None, messaging_service_sid: Optional[str] = None) -> None:
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_PHONE_NUMBER
        self.messaging_service_sid = (messaging_service_sid if messaging_service_sid is not None
                                      else settings.TWILIO_MESSAGING_SERVICE_SID)
        self._client: Optional[Client] = None

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and (self.from_number or self.messaging_service_sid))

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def send(self, to: str, text: str) -> DeliveryResult:
        if not self.is_configured():
            return DeliveryResult(False, error={'code': 'CONFIG_MISSING', 'message': 'Twilio not configured'})
        to = normalize_mobile_number(to)
        opts: Dict[str, Any] = {'to': to, 'body': text}
        if self.messaging_service_sid:
            opts['messaging_service_sid'] = self.messaging_service_sid
        else:
            opts['from_'] = self.from_number
        try:
            msg = self.client.messages.create(**opts)
        except TwilioException as e:
            logger.error('twilio send to %s failed: %s', mask_for_log(to), e)
            return DeliveryResult(False, error={
                'code': getattr(e, 'code', None) or 'TWILIO_ERROR',
                'message': getattr(e, 'msg', None) or str(e),
            })
        logger.info('sms %s sent to %s (status=%s)', msg.sid, mask_for_log(to), getattr(msg, 'status', None))
        return DeliveryResult(True, message_sid=msg.sid)


class LoggingSmsGateway(SmsGateway):
    """Development backend: the message goes to the log instead of a phone."""

    def send(self, to: str, text: str) -> DeliveryResult:
        logger.warning('SMS to %s: %s', normalize_mobile_number(to), text)
        return DeliveryResult(True, message_sid='logged')


def get_sms_gateway() -> SmsGateway:
    return import_string(settings.SMS_GATEWAY)()
