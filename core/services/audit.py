from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from django.db import transaction
from loguru import logger
from core.models import AuditEvent

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id: Optional[int]=None, detail: Optional[Dict[str, Any]]=None) -> Optional[AuditEvent]:
    """Append an audit event.  Auditing never fails the caller."""
    try:
        with transaction.atomic():
            return AuditEvent.objects.create(
                user=user if getattr(user, 'pk', None) else None,
                action=action,
                object_type=object_type, object_id=object_id,
                detail=detail or {},
            )
    except Exception:
        logger.exception("Failed to record audit event {}", action)
        return None
