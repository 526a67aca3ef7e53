"""
Medical report endpoints.

Reports are created with a multipart body (``reportFile`` plus form
fields) or plain JSON when no file is attached.  Public reports can be
fetched by anyone holding their 8-character access code.
"""
from __future__ import annotations

from django.db import transaction
from django.http import FileResponse
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from core.models import HealthRecord, MedicalReport
from core.serializers.reports import MedicalReportSerializer, ReportListQuerySerializer, ReportSearchQuerySerializer
from core.services.audit import log_action
from core.services.health import paginate
from core.services.reports import (
    attach_file,
    create_report,
    delete_report,
    public_payload,
    report_payload,
    reports_for,
    search_reports,
)


def _owned_report(user, report_id) -> MedicalReport:
    report = MedicalReport.objects.select_related('health_record').filter(id=report_id, user=user).first()
    if not report:
        raise NotFound('Medical report not found')
    return report


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@parser_classes([MultiPartParser, FormParser, JSONParser])
def reports(request):
    if request.method == 'GET':
        q = ReportListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = reports_for(request.user)
        if q.validated_data.get('type'):
            qs = qs.filter(report_type=q.validated_data['type'])
        items, pagination = paginate(qs, q.validated_data.get('page', 1), q.validated_data.get('pageSize', 10))
        return Response({'ok': True, 'reports': [report_payload(r) for r in items], 'pagination': pagination})

    s = MedicalReportSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = HealthRecord.objects.filter(id=s.validated_data['healthRecordId'], user=request.user).first()
    if not record:
        raise NotFound('Health record not found')
    try:
        report = create_report(request.user, record, s.report_fields(), upload=request.FILES.get('reportFile'))
    except ValueError as e:
        raise ValidationError({'reportFile': [str(e)]})
    return Response({'ok': True, 'message': 'Medical report created successfully', 'report': report_payload(report)},
                    status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
@parser_classes([MultiPartParser, FormParser, JSONParser])
def report_detail(request, report_id: int):
    report = _owned_report(request.user, report_id)
    if request.method == 'GET':
        return Response({'ok': True, 'report': report_payload(report)})

    if request.method == 'DELETE':
        delete_report(report)
        return Response({'ok': True, 'message': 'Medical report deleted successfully'})

    s = MedicalReportSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    if 'healthRecordId' in s.validated_data:
        record = HealthRecord.objects.filter(id=s.validated_data['healthRecordId'], user=request.user).first()
        if not record:
            raise NotFound('Health record not found')
        report.health_record = record
    fields = s.report_fields()
    for name, value in fields.items():
        setattr(report, name, value)
    upload = request.FILES.get('reportFile')
    # the replaced file is only removed once the new row is committed
    with transaction.atomic():
        if upload is not None:
            try:
                attach_file(report, upload)
            except ValueError as e:
                raise ValidationError({'reportFile': [str(e)]})
        report.save()
    log_action(user=request.user, action='report_update', object_type='medical_report', object_id=report.id,
               detail={'fields': sorted(fields.keys()), 'file': upload is not None})
    return Response({'ok': True, 'message': 'Medical report updated successfully', 'report': report_payload(report)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def download(request, report_id: int):
    report = _owned_report(request.user, report_id)
    if not report.file:
        raise NotFound('Report file not found')
    if not report.file.storage.exists(report.file.name):
        raise NotFound('File not found on server')
    return FileResponse(
        report.file.open('rb'),
        as_attachment=True,
        filename=report.original_name or report.file.name.rsplit('/', 1)[-1],
        content_type=report.content_type or None,
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def search(request):
    q = ReportSearchQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    found = search_reports(
        request.user,
        q=vd.get('q'),
        report_type=vd.get('type'),
        start=vd.get('startDate'),
        end=vd.get('endDate'),
    )
    items, pagination = paginate(found, vd.get('page', 1), vd.get('pageSize', 10))
    return Response({'ok': True, 'reports': [report_payload(r) for r in items], 'pagination': pagination})


@api_view(['GET'])
@permission_classes([AllowAny])
def access_by_code(request, access_code: str):
    report = (MedicalReport.objects.select_related('user', 'health_record')
              .filter(access_code=access_code.upper(), is_public=True).first())
    if not report:
        raise NotFound('Report not found or access denied')
    log_action(user=None, action='report_access', object_type='medical_report', object_id=report.id,
               detail={'accessCode': report.access_code})
    return Response({'ok': True, 'report': public_payload(report)})

access_by_code.cls.throttle_scope = 'qr_scan'
