"""
Health record queries and aggregations.

Every query is scoped to one owner.  Aggregations over the JSON
``diagnosis`` and ``lab_results`` columns are done in Python because the
nested documents are small and per-user.
"""
from __future__ import annotations

import datetime
from collections import Counter
from typing import Iterable, List, Optional, Tuple

from django.db.models import QuerySet
from django.utils import timezone

from core.models import HealthRecord, MedicalReport, User

PAST_CONDITION_STATUSES = {'Resolved', 'Chronic'}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def record_payload(record: HealthRecord) -> dict:
    return {
        'id': record.id,
        'checkupDate': _iso(record.checkup_date),
        'checkupType': record.checkup_type,
        'vitals': record.vitals,
        'bmi': record.bmi,
        'currentSymptoms': record.current_symptoms,
        'diagnosis': record.diagnosis,
        'treatment': record.treatment,
        'doctor': record.doctor,
        'followUp': {
            'required': record.follow_up_required,
            'nextAppointment': _iso(record.next_appointment),
            'instructions': record.follow_up_instructions,
        },
        'labResults': record.lab_results,
        'notes': record.notes,
        'status': record.status,
        'createdAt': _iso(record.created_at),
        'updatedAt': _iso(record.updated_at),
    }


def record_brief(record: HealthRecord) -> dict:
    return {
        'id': record.id,
        'checkupDate': _iso(record.checkup_date),
        'checkupType': record.checkup_type,
        'diagnosis': record.diagnosis,
        'doctor': record.doctor,
        'notes': record.notes,
        'status': record.status,
    }


def report_brief(report: MedicalReport) -> dict:
    return {
        'id': report.id,
        'reportType': report.report_type,
        'reportName': report.report_name,
        'reportDate': _iso(report.report_date),
        'status': report.status,
        'resultStatus': (report.report_details or {}).get('status'),
        'accessCode': report.access_code,
    }


def records_for(user: User) -> QuerySet:
    return HealthRecord.objects.filter(user=user).order_by('-checkup_date', '-id')


def paginate(items, page: int = 1, page_size: int = 10) -> Tuple[list, dict]:
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 10)))
    total = items.count() if isinstance(items, QuerySet) else len(items)
    start = (page - 1) * page_size
    chunk = list(items[start:start + page_size])
    return chunk, {'current': page, 'pages': (total + page_size - 1) // page_size, 'total': total}


def _matches(record: HealthRecord, q: str) -> bool:
    q = q.lower()
    if q in (record.notes or '').lower():
        return True
    if q in str((record.doctor or {}).get('name', '')).lower():
        return True
    return any(q in str(d.get('condition', '')).lower() for d in record.diagnosis or [])


def search_records(user: User, *, q: Optional[str] = None, checkup_type: Optional[str] = None,
                   start: Optional[datetime.date] = None, end: Optional[datetime.date] = None) -> List[HealthRecord]:
    qs = records_for(user)
    if checkup_type:
        qs = qs.filter(checkup_type=checkup_type)
    if start:
        qs = qs.filter(checkup_date__date__gte=start)
    if end:
        qs = qs.filter(checkup_date__date__lte=end)
    if not q:
        return list(qs)
    return [r for r in qs if _matches(r, q)]


def _conditions(records: Iterable[HealthRecord], statuses) -> List[dict]:
    counts: Counter = Counter()
    for r in records:
        for d in r.diagnosis or []:
            if d.get('status') in statuses and d.get('condition'):
                counts[d['condition']] += 1
    return [{'condition': c, 'count': n} for c, n in counts.most_common()]


def active_conditions(records: Iterable[HealthRecord]) -> List[dict]:
    return _conditions(records, {'Active'})


def recent_lab_results(records: Iterable[HealthRecord], limit: int = 5) -> List[dict]:
    results = []
    for r in records:
        for lab in r.lab_results or []:
            results.append({
                'testName': lab.get('testName'),
                'result': lab.get('result'),
                'status': lab.get('status'),
                'testDate': lab.get('testDate') or _iso(r.checkup_date.date()),
                'recordId': r.id,
            })
    results.sort(key=lambda x: x['testDate'] or '', reverse=True)
    return results[:limit]


def health_summary(user: User) -> dict:
    records = list(records_for(user))
    latest = records[0] if records else None
    current = active_conditions(records)
    past = _conditions(records, PAST_CONDITION_STATUSES)
    return {
        'user': {
            'firstName': user.first_name,
            'lastName': user.last_name,
            'bloodGroup': user.blood_group,
            'allergies': user.allergies,
            'currentMedications': user.current_medications,
        },
        'latestRecord': {
            'checkupDate': _iso(latest.checkup_date),
            'checkupType': latest.checkup_type,
            'vitals': latest.vitals,
            'diagnosis': latest.diagnosis,
            'doctor': latest.doctor,
            'followUp': {
                'required': latest.follow_up_required,
                'nextAppointment': _iso(latest.next_appointment),
                'instructions': latest.follow_up_instructions,
            },
            'bmi': latest.bmi,
        } if latest else None,
        'statistics': {
            'totalRecords': len(records),
            'emergencyRecords': sum(1 for r in records if r.checkup_type == 'Emergency'),
            'currentDiseases': len(current),
            'pastDiseases': len(past),
        },
        'currentDiseases': current,
        'pastDiseases': past,
        'recentLabResults': recent_lab_results(records),
    }


def health_timeline(user: User, limit: int = 20) -> List[dict]:
    return [record_brief(r) for r in records_for(user)[:limit]]


def dashboard(user: User, now: Optional[datetime.datetime] = None) -> dict:
    now = now or timezone.now()
    records = list(records_for(user))
    reports = MedicalReport.objects.filter(user=user).order_by('-report_date', '-id')
    conditions = active_conditions(records)
    upcoming = sorted(
        (r for r in records if r.follow_up_required and r.next_appointment and r.next_appointment >= now),
        key=lambda r: r.next_appointment,
    )
    return {
        'user': {
            'id': user.id,
            'firstName': user.first_name,
            'lastName': user.last_name,
            'fullName': user.display_name,
            'mobileNumber': user.mobile_number,
            'bloodGroup': user.blood_group,
            'isVerified': user.is_verified,
            'lastLogin': _iso(user.last_login),
        },
        'statistics': {
            'totalHealthRecords': len(records),
            'totalMedicalReports': reports.count(),
            'emergencyRecords': sum(1 for r in records if r.checkup_type == 'Emergency'),
            'activeConditions': len(conditions),
        },
        'recentHealthRecords': [record_brief(r) for r in records[:5]],
        'recentMedicalReports': [report_brief(r) for r in reports[:5]],
        'activeConditions': conditions,
        'upcomingFollowUps': [{
            'recordId': r.id,
            'checkupDate': _iso(r.checkup_date),
            'nextAppointment': _iso(r.next_appointment),
            'instructions': r.follow_up_instructions,
            'doctor': r.doctor,
        } for r in upcoming],
    }
