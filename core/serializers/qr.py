from rest_framework import serializers

from core.models import HealthQRCode


class QRGenerateSerializer(serializers.Serializer):
    qrType = serializers.ChoiceField(choices=[c for c, _ in HealthQRCode.QR_TYPE_CHOICES], required=False)
    accessLevel = serializers.ChoiceField(choices=[c for c, _ in HealthQRCode.ACCESS_LEVEL_CHOICES], required=False)
    expiresAt = serializers.DateTimeField(required=False, allow_null=True)
    additionalData = serializers.DictField(required=False)

    def validate_additionalData(self, v):
        allowed = {'emergencyContact', 'bloodGroup', 'allergies', 'currentMedications'}
        unknown = set(v) - allowed
        if unknown:
            raise serializers.ValidationError(f"unsupported keys: {', '.join(sorted(unknown))}")
        return v


class QRScanSerializer(serializers.Serializer):
    qrCode = serializers.CharField(max_length=32)
    accessToken = serializers.CharField(max_length=64, required=False, allow_blank=True)

    def validate_qrCode(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('QR code is required')
        return v
