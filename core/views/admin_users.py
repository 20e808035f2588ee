"""
Administrator endpoints for identity records.

Verification status is the only field an administrator changes here; it
decides whether a nurse may bid on or accept requests.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import NotFound
from core.models import Notification, User
from core.permissions import IsAdminRole
from core.serializers.users import UserListQuerySerializer, VerificationSerializer
from core.services.audit import log_action
from core.services.notifications import notify


def format_user(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'name': user.get_full_name() or user.username,
        'role': user.role,
        'verificationStatus': user.verification_status,
        'phone': user.phone,
        'isActive': user.is_active,
        'dateJoined': user.date_joined.isoformat() if user.date_joined else None,
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def users_list(request):
    q = UserListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = User.objects.all()
    if q.validated_data.get('role'):
        qs = qs.filter(role=q.validated_data['role'])
    if q.validated_data.get('verificationStatus'):
        qs = qs.filter(verification_status=q.validated_data['verificationStatus'])
    total = qs.count()
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 50)
    start = (page - 1) * page_size
    data = [format_user(u) for u in qs.order_by('id')[start:start + page_size]]
    return Response({'ok': True, 'data': data, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


def _notify_verification(user: User, reason: str) -> None:
    if user.verification_status == User.VERIFICATION_VERIFIED:
        notify(user.id, None, Notification.KIND_NURSE_VERIFIED)
    elif user.verification_status in (User.VERIFICATION_REJECTED, User.VERIFICATION_SUSPENDED):
        notify(user.id, None, Notification.KIND_NURSE_REJECTED, reason=reason)


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsAdminRole])
def user_verification(request, pk: int):
    s = VerificationSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = User.objects.filter(pk=pk).first()
    if user is None:
        raise NotFound('User not found.')
    previous = user.verification_status
    reason = s.validated_data.get('reason', '')
    user.verification_status = s.validated_data['verificationStatus']
    user.save(update_fields=['verification_status'])
    log_action(user=request.user, action='user.verification', object_type='user', object_id=user.id,
               detail={'from': previous, 'to': user.verification_status, 'reason': reason or None})
    if user.role == User.ROLE_NURSE and previous != user.verification_status:
        _notify_verification(user, reason)
    return Response({'ok': True, 'data': format_user(user)})
