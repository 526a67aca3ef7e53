"""
QR health card service.

Each identity owns at most one :class:`HealthQRCode`.  The encoded
payload is a JSON document carrying the card code and its access token;
scanning a card validates it, counts the scan and returns an emergency
summary of the owner.
"""
from __future__ import annotations

import base64
import json
import logging
import secrets
import string
import time
from io import BytesIO
from typing import Any, Dict, Optional

import qrcode
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.models import HealthQRCode, HealthRecord, MedicalReport, User
from core.services.audit import log_action
from core.services.health import report_brief
from core.services.identity import mask_national_id

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    out = ''
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or '0'


def generate_card_code() -> str:
    code = 'MH' + _base36(int(time.time() * 1000)) + ''.join(secrets.choice(_BASE36) for _ in range(5))
    while HealthQRCode.objects.filter(code=code).exists():
        code = 'MH' + _base36(int(time.time() * 1000)) + ''.join(secrets.choice(_BASE36) for _ in range(5))
    return code


def profile_card_data(user: User) -> Dict[str, Any]:
    return {
        'emergencyContact': (user.emergency_contact or {}).get('mobileNumber') or user.mobile_number,
        'bloodGroup': user.blood_group,
        'allergies': user.allergies,
        'currentMedications': user.current_medications,
    }


@transaction.atomic
def ensure_qr_code(user: User, qr_type: Optional[str] = None, additional_data: Optional[dict] = None,
                   access_level: Optional[str] = None, expires_at=None) -> HealthQRCode:
    """Create the caller's card, or refresh the profile data on the existing one.

    A refresh re-validates the card; the code and access token stay the same.
    """
    data = {**profile_card_data(user), **(additional_data or {})}
    qr = HealthQRCode.objects.select_for_update().filter(user=user).first()
    if qr is None:
        qr = HealthQRCode.objects.create(
            user=user,
            code=generate_card_code(),
            access_token=secrets.token_hex(32),
            qr_type=qr_type or 'Health Card',
            access_level=access_level or 'Restricted',
            expires_at=expires_at,
            additional_data=data,
        )
        log_action(user=user, action='qr_create', object_type='qr_code', object_id=qr.id)
        return qr
    qr.additional_data = data
    qr.is_valid = True
    qr.expires_at = expires_at
    if qr_type:
        qr.qr_type = qr_type
    if access_level:
        qr.access_level = access_level
    qr.save()
    log_action(user=user, action='qr_refresh', object_type='qr_code', object_id=qr.id)
    return qr


def qr_payload_text(qr: HealthQRCode) -> str:
    return json.dumps({
        'userId': qr.user_id,
        'qrCode': qr.code,
        'accessToken': qr.access_token,
        'qrType': qr.qr_type,
        'timestamp': timezone.now().isoformat(),
        'additionalData': qr.additional_data,
    })


def render_data_uri(data: str) -> str:
    """PNG rendering of ``data`` as a ``data:`` URI."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color='#000000', back_color='#FFFFFF')
    buffer = BytesIO()
    img.save(buffer, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode()


def card_payload(qr: HealthQRCode, include_token: bool = False) -> dict:
    data = qr_payload_text(qr)
    out = {
        'id': qr.id,
        'qrCode': qr.code,
        'qrType': qr.qr_type,
        'accessLevel': qr.access_level,
        'qrData': data,
        'qrImage': render_data_uri(data),
        'isValid': qr.is_valid,
        'expiresAt': qr.expires_at.isoformat() if qr.expires_at else None,
        'scanCount': qr.scan_count,
        'lastScannedAt': qr.last_scanned_at.isoformat() if qr.last_scanned_at else None,
    }
    if include_token:
        out['accessToken'] = qr.access_token
    return out


def scan(code: str, access_token: Optional[str] = None, now=None) -> dict:
    """Validate a scanned card and return the owner's emergency summary.

    Raises ``LookupError`` for an unknown card, ``ValueError`` for an
    invalid or expired one and ``PermissionError`` when a restricted card
    is scanned without its access token.
    """
    now = now or timezone.now()
    qr = HealthQRCode.objects.select_related('user').filter(code=code).first()
    if qr is None:
        raise LookupError('Invalid QR code')
    if qr.is_valid and qr.expires_at and qr.expires_at < now:
        HealthQRCode.objects.filter(pk=qr.pk).update(is_valid=False)
        qr.is_valid = False
    if not qr.is_valid or not qr.user.is_active:
        raise ValueError('QR code has expired or is invalid')
    if qr.access_level == 'Restricted' and not secrets.compare_digest(str(access_token or ''), qr.access_token):
        logger.warning('restricted QR %s scanned without a valid access token', qr.code)
        raise PermissionError('Access denied - invalid access token')

    HealthQRCode.objects.filter(pk=qr.pk).update(scan_count=F('scan_count') + 1, last_scanned_at=now)
    qr.refresh_from_db(fields=['scan_count', 'last_scanned_at'])
    log_action(user=None, action='qr_scan', object_type='qr_code', object_id=qr.id,
               detail={'owner': qr.user_id, 'scanCount': qr.scan_count})

    user = qr.user
    latest = HealthRecord.objects.filter(user=user).order_by('-checkup_date', '-id').first()
    reports = MedicalReport.objects.filter(user=user).order_by('-report_date', '-id')[:3]
    return {
        'user': {
            'id': user.id,
            'firstName': user.first_name,
            'lastName': user.last_name,
            'mobileNumber': user.mobile_number,
            'bloodGroup': user.blood_group,
            'address': user.address,
        },
        'emergencyInfo': {
            'name': user.display_name,
            'mobileNumber': user.mobile_number,
            'nationalIdNumber': mask_national_id(user.national_id),
            'bloodGroup': user.blood_group,
            'allergies': user.allergies,
            'currentMedications': user.current_medications,
            'emergencyContact': user.emergency_contact,
        },
        'latestHealthRecord': {
            'checkupDate': latest.checkup_date.isoformat(),
            'checkupType': latest.checkup_type,
            'vitals': latest.vitals,
            'diagnosis': latest.diagnosis,
            'doctor': latest.doctor,
            'followUp': {
                'required': latest.follow_up_required,
                'nextAppointment': latest.next_appointment.isoformat() if latest.next_appointment else None,
                'instructions': latest.follow_up_instructions,
            },
        } if latest else None,
        'recentReports': [report_brief(r) for r in reports],
        'qrCodeInfo': {
            'qrType': qr.qr_type,
            'scanCount': qr.scan_count,
            'lastScannedAt': qr.last_scanned_at.isoformat() if qr.last_scanned_at else None,
        },
    }
