import bleach
from rest_framework import serializers

from core.models import HealthRecord


class MeasurementSerializer(serializers.Serializer):
    value = serializers.FloatField(min_value=0)
    unit = serializers.CharField(required=False, max_length=16)


class BloodPressureSerializer(serializers.Serializer):
    systolic = serializers.FloatField(min_value=0)
    diastolic = serializers.FloatField(min_value=0)
    unit = serializers.CharField(required=False, max_length=16, default='mmHg')


class VitalsSerializer(serializers.Serializer):
    bloodPressure = BloodPressureSerializer(required=False)
    heartRate = MeasurementSerializer(required=False)
    temperature = MeasurementSerializer(required=False)
    weight = MeasurementSerializer(required=False)
    height = MeasurementSerializer(required=False)
    oxygenSaturation = MeasurementSerializer(required=False)


class DiagnosisSerializer(serializers.Serializer):
    condition = serializers.CharField(max_length=255)
    severity = serializers.ChoiceField(choices=['Mild', 'Moderate', 'Severe', 'Critical'], required=False)
    status = serializers.ChoiceField(choices=['Active', 'Resolved', 'Chronic', 'Under Treatment'], required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class DoctorSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=128)
    specialization = serializers.CharField(required=False, allow_blank=True, max_length=128)
    licenseNumber = serializers.CharField(required=False, allow_blank=True, max_length=64)
    hospital = serializers.CharField(required=False, allow_blank=True, max_length=255)
    contactNumber = serializers.CharField(required=False, allow_blank=True, max_length=32)


class FollowUpSerializer(serializers.Serializer):
    required = serializers.BooleanField(default=False)
    nextAppointment = serializers.DateTimeField(required=False, allow_null=True)
    instructions = serializers.CharField(required=False, allow_blank=True)


class LabResultSerializer(serializers.Serializer):
    testName = serializers.CharField(max_length=255)
    result = serializers.CharField(required=False, allow_blank=True)
    normalRange = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=['Normal', 'Abnormal', 'Critical'], required=False)
    labName = serializers.CharField(required=False, allow_blank=True)
    testDate = serializers.DateField(required=False, allow_null=True)

    def validate(self, attrs):
        # stored in a JSON column
        if attrs.get('testDate'):
            attrs['testDate'] = attrs['testDate'].isoformat()
        return attrs


class TreatmentSerializer(serializers.Serializer):
    prescribedMedicines = serializers.ListField(child=serializers.DictField(), required=False)
    procedures = serializers.ListField(child=serializers.DictField(), required=False)
    recommendations = serializers.ListField(child=serializers.CharField(), required=False)


class HealthRecordSerializer(serializers.Serializer):
    checkupDate = serializers.DateTimeField()
    checkupType = serializers.ChoiceField(choices=[c for c, _ in HealthRecord.CHECKUP_TYPE_CHOICES])
    vitals = VitalsSerializer(required=False)
    currentSymptoms = serializers.ListField(child=serializers.CharField(max_length=255), required=False)
    diagnosis = DiagnosisSerializer(many=True, required=False)
    treatment = TreatmentSerializer(required=False)
    doctor = DoctorSerializer(required=False)
    followUp = FollowUpSerializer(required=False)
    labResults = LabResultSerializer(many=True, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=[c for c, _ in HealthRecord.STATUS_CHOICES], required=False)

    def validate_notes(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def record_fields(self) -> dict:
        """Validated data keyed by model column."""
        vd = self.validated_data
        out = {}
        simple = {
            'checkupDate': 'checkup_date',
            'checkupType': 'checkup_type',
            'currentSymptoms': 'current_symptoms',
            'notes': 'notes',
            'status': 'status',
        }
        for key, column in simple.items():
            if key in vd:
                out[column] = vd[key]
        for key, column in (('vitals', 'vitals'), ('treatment', 'treatment'), ('doctor', 'doctor')):
            if key in vd:
                out[column] = dict(vd[key])
        if 'diagnosis' in vd:
            out['diagnosis'] = [dict(d) for d in vd['diagnosis']]
        if 'labResults' in vd:
            out['lab_results'] = [dict(r) for r in vd['labResults']]
        if 'followUp' in vd:
            fu = vd['followUp']
            out['follow_up_required'] = fu.get('required', False)
            out['next_appointment'] = fu.get('nextAppointment')
            out['follow_up_instructions'] = fu.get('instructions', '')
        return out


class RecordListQuerySerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=[c for c, _ in HealthRecord.CHECKUP_TYPE_CHOICES], required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


class RecordSearchQuerySerializer(RecordListQuerySerializer):
    q = serializers.CharField(max_length=64, required=False, allow_blank=True)
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get('startDate'), attrs.get('endDate')
        if start and end and start > end:
            raise serializers.ValidationError({'endDate': 'endDate must not be before startDate'})
        return attrs


class TimelineQuerySerializer(serializers.Serializer):
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False)
