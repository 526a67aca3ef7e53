"""
QR health card endpoints.

``generate`` and ``my_card`` belong to the authenticated owner.  ``scan``
is public: whoever holds the card may read the emergency summary, and
restricted cards additionally need the access token embedded in the
QR payload.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from core.models import HealthQRCode
from core.serializers.qr import QRGenerateSerializer, QRScanSerializer
from core.services.qr import card_payload, ensure_qr_code, scan as scan_card


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def generate(request):
    s = QRGenerateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    qr = ensure_qr_code(
        request.user,
        qr_type=vd.get('qrType'),
        additional_data=vd.get('additionalData'),
        access_level=vd.get('accessLevel'),
        expires_at=vd.get('expiresAt'),
    )
    return Response({'ok': True, 'message': 'QR code generated successfully',
                     'qrCode': card_payload(qr, include_token=True)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_card(request):
    qr = HealthQRCode.objects.filter(user=request.user).first()
    if not qr:
        raise NotFound('QR code not found. Please generate one first.')
    return Response({'ok': True, 'qrCode': card_payload(qr, include_token=True)})


@api_view(['POST'])
@permission_classes([AllowAny])
def scan(request):
    s = QRScanSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        data = scan_card(s.validated_data['qrCode'], s.validated_data.get('accessToken'))
    except LookupError as e:
        raise NotFound(str(e))
    except PermissionError as e:
        raise PermissionDenied(str(e))
    except ValueError as e:
        raise ValidationError({'qrCode': [str(e)]})
    return Response({'ok': True, 'message': 'QR code scanned successfully', 'data': data})

scan.cls.throttle_scope = 'qr_scan'
