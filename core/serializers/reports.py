import json

import bleach
from rest_framework import serializers

from core.models import MedicalReport

RESULT_STATUSES = ['Normal', 'Abnormal', 'Critical', 'Pending']
DETAIL_KEYS = ('findings', 'conclusion', 'recommendations', 'normalRange', 'actualValue', 'status')
LAB_KEYS = ('name', 'address', 'contactNumber', 'licenseNumber', 'doctorName')


def _clean_dict(value, keys) -> dict:
    if value in (None, ''):
        return {}
    if isinstance(value, str):
        # multipart bodies carry nested objects as JSON text
        try:
            value = json.loads(value)
        except ValueError:
            raise serializers.ValidationError('Expected an object')
    if not isinstance(value, dict):
        raise serializers.ValidationError('Expected an object')
    return {k: bleach.clean(str(value[k]).strip(), strip=True) for k in keys if value.get(k) not in (None, '')}


class MedicalReportSerializer(serializers.Serializer):
    healthRecordId = serializers.IntegerField(min_value=1)
    reportType = serializers.ChoiceField(choices=[c for c, _ in MedicalReport.REPORT_TYPE_CHOICES])
    reportName = serializers.CharField(max_length=255)
    reportDate = serializers.DateTimeField()
    reportDetails = serializers.JSONField(required=False)
    labInfo = serializers.JSONField(required=False)
    isPublic = serializers.BooleanField(required=False)
    status = serializers.ChoiceField(choices=[c for c, _ in MedicalReport.STATUS_CHOICES], required=False)

    def validate_reportName(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('Report name is required')
        return v

    def validate_reportDetails(self, v):
        details = _clean_dict(v, DETAIL_KEYS)
        details.setdefault('status', 'Pending')
        if details['status'] not in RESULT_STATUSES:
            raise serializers.ValidationError(f"status must be one of {', '.join(RESULT_STATUSES)}")
        return details

    def validate_labInfo(self, v):
        return _clean_dict(v, LAB_KEYS)

    def report_fields(self) -> dict:
        """Validated data keyed by model column."""
        mapping = {
            'reportType': 'report_type',
            'reportName': 'report_name',
            'reportDate': 'report_date',
            'reportDetails': 'report_details',
            'labInfo': 'lab_info',
            'isPublic': 'is_public',
            'status': 'status',
        }
        return {mapping[k]: v for k, v in self.validated_data.items() if k in mapping}


class ReportListQuerySerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=[c for c, _ in MedicalReport.REPORT_TYPE_CHOICES], required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


class ReportSearchQuerySerializer(ReportListQuerySerializer):
    q = serializers.CharField(max_length=64, required=False, allow_blank=True)
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get('startDate'), attrs.get('endDate')
        if start and end and start > end:
            raise serializers.ValidationError({'endDate': 'endDate must not be before startDate'})
        return attrs
