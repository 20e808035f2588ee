from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import NotFound
from core.models import Notification
from core.serializers.notifications import NotificationListQuerySerializer
from core.services.notifications import delete_notification, list_notifications, mark_all_read, mark_read, unread_count


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications_list(request):
    q = NotificationListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 20)
    data, total = list_notifications(
        request.user, unread_only=q.validated_data.get('unreadOnly', False), page=page, page_size=page_size,
    )
    return Response({'ok': True, 'data': data, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications_unread_count(request):
    return Response({'ok': True, 'count': unread_count(request.user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def notification_read(request, pk: int):
    if not Notification.objects.filter(id=pk, user=request.user).exists():
        raise NotFound('Notification not found.')
    return Response({'ok': True, 'updated': mark_read(request.user, pk)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def notifications_read_all(request):
    return Response({'ok': True, 'updated': mark_all_read(request.user)})


@api_view(['DELETE'])
@permission_classes([IsAuthenticated])
def notification_detail(request, pk: int):
    if not delete_notification(request.user, pk):
        raise NotFound('Notification not found.')
    return Response({'ok': True, 'deleted': 1})
