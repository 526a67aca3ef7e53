from __future__ import annotations

import datetime
import logging
import os
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from core.models import HealthRecord, MedicalReport, User, generate_access_code
from core.services.audit import log_action

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def validate_upload(f) -> None:
    """Raise ``ValueError`` unless ``f`` is an allowed report file."""
    size_mb = (f.size or 0) / (1024 * 1024)
    if size_mb > settings.UPLOAD_MAX_MB:
        raise ValueError(f'File too large (max {settings.UPLOAD_MAX_MB} MB)')
    ext = os.path.splitext(f.name or '')[1].lower()
    if ext not in settings.ALLOWED_UPLOAD_EXTENSIONS:
        raise ValueError('Only images, PDFs, and documents are allowed')
    ctype = getattr(f, 'content_type', '') or ''
    if not any(ctype.startswith(prefix) for prefix in settings.ALLOWED_UPLOAD_TYPES):
        raise ValueError('Only images, PDFs, and documents are allowed')


def _unique_access_code() -> str:
    code = generate_access_code()
    while MedicalReport.objects.filter(access_code=code).exists():
        code = generate_access_code()
    return code


def discard_file_on_commit(fieldfile) -> None:
    """Remove a stored file once the surrounding transaction commits."""
    if not fieldfile:
        return
    storage, name = fieldfile.storage, fieldfile.name
    transaction.on_commit(lambda: storage.delete(name))


def attach_file(report: MedicalReport, f) -> None:
    validate_upload(f)
    discard_file_on_commit(report.file)
    report.file = f
    report.original_name = os.path.basename(f.name or '')[:255]
    report.content_type = getattr(f, 'content_type', '') or ''
    report.size = f.size or 0
    report.uploaded_at = timezone.now()


@transaction.atomic
def create_report(user: User, record: HealthRecord, fields: dict, upload=None) -> MedicalReport:
    report = MedicalReport(user=user, health_record=record, access_code=_unique_access_code(), **fields)
    if upload is not None:
        attach_file(report, upload)
    report.save()
    log_action(user=user, action='report_create', object_type='medical_report', object_id=report.id,
               detail={'recordId': record.id, 'hasFile': bool(report.file)})
    return report


@transaction.atomic
def delete_report(report: MedicalReport) -> None:
    rid, user = report.id, report.user
    discard_file_on_commit(report.file)
    report.delete()
    log_action(user=user, action='report_delete', object_type='medical_report', object_id=rid)


def reports_for(user: User) -> QuerySet:
    return (MedicalReport.objects.filter(user=user)
            .select_related('health_record')
            .order_by('-report_date', '-id'))


def _matches(report: MedicalReport, q: str) -> bool:
    q = q.lower()
    details = report.report_details or {}
    haystack = (
        report.report_name,
        details.get('findings', ''),
        details.get('conclusion', ''),
        (report.lab_info or {}).get('name', ''),
    )
    return any(q in str(h or '').lower() for h in haystack)


def search_reports(user: User, *, q: Optional[str] = None, report_type: Optional[str] = None,
                   start: Optional[datetime.date] = None, end: Optional[datetime.date] = None) -> List[MedicalReport]:
    qs = reports_for(user)
    if report_type:
        qs = qs.filter(report_type=report_type)
    if start:
        qs = qs.filter(report_date__date__gte=start)
    if end:
        qs = qs.filter(report_date__date__lte=end)
    if not q:
        return list(qs)
    return [r for r in qs if _matches(r, q)]


def _record_ref(record: HealthRecord) -> dict:
    return {
        'id': record.id,
        'checkupDate': _iso(record.checkup_date),
        'checkupType': record.checkup_type,
        'doctor': record.doctor,
    }


def report_payload(report: MedicalReport) -> dict:
    return {
        'id': report.id,
        'healthRecord': _record_ref(report.health_record),
        'reportType': report.report_type,
        'reportName': report.report_name,
        'reportDate': _iso(report.report_date),
        'fileInfo': {
            'originalName': report.original_name,
            'fileSize': report.size,
            'mimeType': report.content_type,
            'uploadedAt': _iso(report.uploaded_at),
        } if report.file else None,
        'reportDetails': report.report_details,
        'labInfo': report.lab_info,
        'isPublic': report.is_public,
        'accessCode': report.access_code,
        'status': report.status,
        'isVerified': report.is_verified,
        'createdAt': _iso(report.created_at),
        'updatedAt': _iso(report.updated_at),
    }


def public_payload(report: MedicalReport) -> dict:
    """What an access-code holder may see: no file, no national ID."""
    user = report.user
    return {
        'id': report.id,
        'reportType': report.report_type,
        'reportName': report.report_name,
        'reportDate': _iso(report.report_date),
        'reportDetails': report.report_details,
        'labInfo': report.lab_info,
        'user': {'firstName': user.first_name, 'lastName': user.last_name},
        'healthRecord': _record_ref(report.health_record),
    }
