"""
Staff-only identity administration: list, activate/deactivate, unlock.
"""
from __future__ import annotations

from django.db.models import Q
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.models import User
from core.serializers.auth import IdentityListQuerySerializer, IdentityStatusSerializer
from core.services.health import paginate
from core.services.identity import mask_mobile, mask_national_id, set_identity_active, unlock_identity

from ..permissions import IsAdminRole


def _identity(user_id) -> User:
    user = User.objects.filter(id=user_id, is_staff=False).first()
    if not user:
        raise NotFound('Identity not found')
    return user


def identity_status(user: User) -> dict:
    return {
        'id': user.id,
        'fullName': user.display_name,
        'mobileNumber': mask_mobile(user.mobile_number),
        'nationalIdNumber': mask_national_id(user.national_id),
        'isVerified': user.is_verified,
        'isActive': user.is_active,
        'isLocked': user.is_locked(),
        'lockedUntil': user.locked_until.isoformat() if user.locked_until else None,
        'loginFailureCount': user.login_failure_count,
        'lastLogin': user.last_login.isoformat() if user.last_login else None,
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def list_identities(request):
    s = IdentityListQuerySerializer(data=request.query_params)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    qs = User.objects.filter(is_staff=False).order_by('-created_at', '-id')
    q = (vd.get('q') or '').strip()
    if q:
        qs = qs.filter(Q(first_name__icontains=q) | Q(last_name__icontains=q)
                       | Q(mobile_number=q) | Q(national_id=q))
    if vd['locked']:
        qs = qs.filter(locked_until__gt=timezone.now())
    items, pagination = paginate(qs, vd.get('page', 1), vd.get('pageSize', 20))
    return Response({'ok': True, 'identities': [identity_status(u) for u in items], 'pagination': pagination})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def set_status(request, user_id: int):
    s = IdentityStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = set_identity_active(_identity(user_id), s.validated_data['active'], actor=request.user)
    message = 'Identity activated' if user.is_active else 'Identity deactivated'
    return Response({'ok': True, 'message': message, 'identity': identity_status(user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def unlock(request, user_id: int):
    user = unlock_identity(_identity(user_id), actor=request.user)
    return Response({'ok': True, 'message': 'Identity unlocked', 'identity': identity_status(user)})
