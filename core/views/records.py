"""
Health record endpoints.

Records are always looked up through ``user=request.user`` so one
identity can never read or change another's records; a foreign id is
reported as not found.
"""
from __future__ import annotations

from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.models import HealthRecord
from core.serializers.health import (
    HealthRecordSerializer,
    RecordListQuerySerializer,
    RecordSearchQuerySerializer,
    TimelineQuerySerializer,
)
from core.services.audit import log_action
from core.services.health import (
    health_summary,
    health_timeline,
    paginate,
    record_payload,
    records_for,
    search_records,
)
from core.services.reports import discard_file_on_commit


def _owned_record(user, record_id) -> HealthRecord:
    record = HealthRecord.objects.filter(id=record_id, user=user).first()
    if not record:
        raise NotFound('Health record not found')
    return record


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def records(request):
    if request.method == 'GET':
        q = RecordListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = records_for(request.user)
        if q.validated_data.get('type'):
            qs = qs.filter(checkup_type=q.validated_data['type'])
        items, pagination = paginate(qs, q.validated_data.get('page', 1), q.validated_data.get('pageSize', 10))
        return Response({'ok': True, 'records': [record_payload(r) for r in items], 'pagination': pagination})

    s = HealthRecordSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    record = HealthRecord.objects.create(user=request.user, **s.record_fields())
    log_action(user=request.user, action='record_create', object_type='health_record', object_id=record.id)
    return Response({'ok': True, 'message': 'Health record created successfully', 'record': record_payload(record)},
                    status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def record_detail(request, record_id: int):
    if request.method == 'GET':
        return Response({'ok': True, 'record': record_payload(_owned_record(request.user, record_id))})

    if request.method == 'PUT':
        s = HealthRecordSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        with transaction.atomic():
            record = HealthRecord.objects.select_for_update().filter(id=record_id, user=request.user).first()
            if not record:
                raise NotFound('Health record not found')
            fields = s.record_fields()
            for name, value in fields.items():
                setattr(record, name, value)
            record.save()
        log_action(user=request.user, action='record_update', object_type='health_record', object_id=record.id,
                   detail={'fields': sorted(fields.keys())})
        return Response({'ok': True, 'message': 'Health record updated successfully', 'record': record_payload(record)})

    record = _owned_record(request.user, record_id)
    rid = record.id
    # reports cascade with the record; their files go once the delete commits
    with transaction.atomic():
        for report in record.reports.all():
            discard_file_on_commit(report.file)
        record.delete()
    log_action(user=request.user, action='record_delete', object_type='health_record', object_id=rid)
    return Response({'ok': True, 'message': 'Health record deleted successfully'})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def summary(request):
    return Response({'ok': True, **health_summary(request.user)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def timeline(request):
    q = TimelineQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response({'ok': True, 'timeline': health_timeline(request.user, q.validated_data.get('limit', 20))})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def search(request):
    q = RecordSearchQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    found = search_records(
        request.user,
        q=vd.get('q'),
        checkup_type=vd.get('type'),
        start=vd.get('startDate'),
        end=vd.get('endDate'),
    )
    items, pagination = paginate(found, vd.get('page', 1), vd.get('pageSize', 10))
    return Response({'ok': True, 'records': [record_payload(r) for r in items], 'pagination': pagination})
