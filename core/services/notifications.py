"""
In-app notifications: the lifecycle's fire-and-forget collaborator.

``notify`` is called after a lifecycle mutation has been written.  It stores
a :class:`~core.models.Notification` in its own savepoint and pushes it to
the recipient's websocket group.  It never raises: a failed delivery is
logged and the mutation that triggered it stands.
"""
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from loguru import logger

from core.models import Notification

TITLES = {
    Notification.KIND_APPLICATION_RECEIVED: 'New application received',
    Notification.KIND_APPLICATION_ACCEPTED: 'Application accepted',
    Notification.KIND_APPLICATION_REJECTED: 'Application declined',
    Notification.KIND_REQUEST_ACCEPTED: 'Request accepted',
    Notification.KIND_REQUEST_STARTED: 'Care has started',
    Notification.KIND_REQUEST_COMPLETED: 'Request completed',
    Notification.KIND_REQUEST_CANCELLED: 'Request cancelled',
    Notification.KIND_NURSE_VERIFIED: 'Account verified',
    Notification.KIND_NURSE_REJECTED: 'Verification declined',
}

MESSAGES = {
    Notification.KIND_APPLICATION_RECEIVED: '{actor} has applied to your request "{title}".',
    Notification.KIND_APPLICATION_ACCEPTED: 'Your application for "{title}" has been accepted.',
    Notification.KIND_APPLICATION_REJECTED: 'Your application for "{title}" was not selected.',
    Notification.KIND_REQUEST_ACCEPTED: '{actor} has accepted your request "{title}".',
    Notification.KIND_REQUEST_STARTED: 'Work on "{title}" has started.',
    Notification.KIND_REQUEST_COMPLETED: '"{title}" has been confirmed complete by both parties.',
    Notification.KIND_REQUEST_CANCELLED: '"{title}" has been cancelled.',
    Notification.KIND_NURSE_VERIFIED: 'Your nurse account has been verified. You can now apply to requests.',
    Notification.KIND_NURSE_REJECTED: 'Your nurse verification was declined: {reason}',
}


def group_name(user_id) -> str:
    return f"notifications.{user_id}"


def notify(user_id, request_id, kind: str, **data) -> Optional[Notification]:
    """Store and push a notification; log and return ``None`` on any failure."""
    try:
        title = data.get('title') or ''
        message = MESSAGES[kind].format(
            title=title, actor=data.get('actor') or 'Someone', reason=data.get('reason') or 'no reason given',
        )
        with transaction.atomic():
            note = Notification.objects.create(
                user_id=user_id,
                request_id=request_id,
                kind=kind,
                title=TITLES[kind],
                message=message,
                data=data,
            )
        if settings.NOTIFY_PUSH_ENABLE:
            _push(note)
        logger.debug("Notified user {} of {} on request {}", user_id, kind, request_id)
        return note
    except Exception:
        logger.exception("Failed to deliver {} notification to user {} for request {}", kind, user_id, request_id)
        return None


def _push(note: Notification) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(group_name(note.user_id), {
        "type": "notification.created",
        **format_notification(note),
    })


def format_notification(note: Notification) -> dict:
    return {
        'id': note.id,
        'kind': note.kind,
        'title': note.title,
        'message': note.message,
        'requestId': note.request_id,
        'data': note.data,
        'isRead': note.is_read,
        'readAt': note.read_at.isoformat() if note.read_at else None,
        'createdAt': note.created_at.isoformat() if note.created_at else None,
    }


def list_notifications(user, *, unread_only: bool = False, page: int = 1, page_size: int = 20):
    qs = Notification.objects.filter(user=user)
    if unread_only:
        qs = qs.filter(is_read=False)
    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    items = qs.order_by('-created_at', '-id')[start:start + page_size]
    return [format_notification(n) for n in items], total


def unread_count(user) -> int:
    return Notification.objects.filter(user=user, is_read=False).count()


def mark_read(user, notification_id) -> int:
    return Notification.objects.filter(id=notification_id, user=user, is_read=False).update(
        is_read=True, read_at=timezone.now()
    )


def mark_all_read(user) -> int:
    return Notification.objects.filter(user=user, is_read=False).update(is_read=True, read_at=timezone.now())


def delete_notification(user, notification_id) -> int:
    deleted, _ = Notification.objects.filter(id=notification_id, user=user).delete()
    return deleted
