"""
Request lifecycle engine.

Every state change is a single conditional UPDATE keyed on the status that
was authorised (``WHERE id = ? AND status = ?``).  When it matches no row
the request moved underneath us; the fresh row is re-checked so the caller
gets the error that the new state implies.  There are no retries here.

The dual-completion protocol lives in :func:`confirm_complete`: one UPDATE
sets the caller's flag and, in the same statement, completes the request
if the other party's flag was already set.
"""
from typing import Optional, Tuple

from django.conf import settings
from django.db import models, transaction
from django.db.models import Case, F, Q, Value, When
from django.utils import timezone
from loguru import logger

from core import lifecycle
from core.exceptions import BadRequest, Forbidden, InvalidTransition, NotFound
from core.models import Application, Notification, RequestTransition, ServiceRequest, User
from core.services.notifications import notify

EDITABLE_FIELDS = (
    'title',
    'description',
    'service_type',
    'address',
    'scheduled_date',
    'estimated_duration',
    'urgency_level',
    'special_requirements',
    'budget',
    'contact_phone',
    'notes',
)

# side -> (transition, own flag, own timestamp, other party's flag)
_CONFIRM_SIDES = {
    'provider': (
        lifecycle.PROVIDER_CONFIRM,
        'provider_confirmed_complete',
        'provider_confirmed_at',
        'patient_confirmed_complete',
    ),
    'patient': (
        lifecycle.PATIENT_CONFIRM,
        'patient_confirmed_complete',
        'patient_confirmed_at',
        'provider_confirmed_complete',
    ),
}


def display_name(user: Optional[User]) -> Optional[str]:
    if user is None:
        return None
    return user.get_full_name() or user.username


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


def _party(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {'id': user.id, 'name': display_name(user), 'phone': user.phone}


def format_request(req: ServiceRequest) -> dict:
    return {
        'id': req.id,
        'title': req.title,
        'description': req.description,
        'serviceType': req.service_type,
        'status': req.status,
        'address': req.address,
        'scheduledDate': _iso(req.scheduled_date),
        'estimatedDuration': req.estimated_duration,
        'urgencyLevel': req.urgency_level,
        'specialRequirements': req.special_requirements,
        'budget': _money(req.budget),
        'contactPhone': req.contact_phone,
        'notes': req.notes,
        'patientId': req.patient_id,
        'nurseId': req.nurse_id,
        'patient': _party(req.patient),
        'nurse': _party(req.nurse),
        'providerConfirmedComplete': req.provider_confirmed_complete,
        'providerConfirmedAt': _iso(req.provider_confirmed_at),
        'patientConfirmedComplete': req.patient_confirmed_complete,
        'patientConfirmedAt': _iso(req.patient_confirmed_at),
        'cancellationReason': req.cancellation_reason or None,
        'createdAt': _iso(req.created_at),
        'acceptedAt': _iso(req.accepted_at),
        'startedAt': _iso(req.started_at),
        'completedAt': _iso(req.completed_at),
        'cancelledAt': _iso(req.cancelled_at),
    }


def load_request(request_id, *, for_update: bool = False) -> ServiceRequest:
    """Fetch a request or raise ``NotFound``."""
    if for_update:
        qs = ServiceRequest.objects.select_for_update()
    else:
        qs = ServiceRequest.objects.select_related('patient', 'nurse')
    req = qs.filter(pk=request_id).first()
    if req is None:
        raise NotFound('Request not found.')
    return req


def can_view(user: User, req: ServiceRequest) -> bool:
    if getattr(user, 'role', None) == lifecycle.ADMIN:
        return True
    return lifecycle.same_identity(user, req.patient_id) or lifecycle.same_identity(user, req.nurse_id)


def record_transition(req: ServiceRequest, action: str, from_status, to_status, operator, reason: str = '') -> None:
    RequestTransition.objects.create(
        request_id=req.pk,
        action=action,
        from_status=from_status,
        to_status=to_status,
        operator=operator if getattr(operator, 'pk', None) else None,
        reason=reason[:255],
    )
    logger.info(
        "Request {} {}: {} -> {} by user {}",
        req.pk, action, from_status, to_status, getattr(operator, 'pk', None),
    )


def _compare_and_set(req: ServiceRequest, target: str, now, **changes) -> bool:
    return ServiceRequest.objects.filter(pk=req.pk, status=req.status).update(
        status=target, updated_at=now, **changes
    ) == 1


def raise_stale(actor, request_id, transition: str):
    """The row changed between check and write; report what the fresh state implies."""
    fresh = load_request(request_id)
    lifecycle.check(actor, fresh, transition)
    raise InvalidTransition(fresh.status, lifecycle.TARGET_STATUS.get(transition, transition))


def claim_request(request_id, nurse_id, now) -> bool:
    """Atomically move a pending request to accepted with ``nurse_id`` assigned.

    Returns False when the request was no longer pending, which is how the
    loser of two concurrent accepts finds out.
    """
    return ServiceRequest.objects.filter(pk=request_id, status=ServiceRequest.STATUS_PENDING).update(
        status=ServiceRequest.STATUS_ACCEPTED,
        nurse_id=nurse_id,
        accepted_at=now,
        updated_at=now,
    ) == 1


def close_open_applications(request_id, *, now, keep_id=None) -> list:
    """Reject every still-pending bid on a request that has left ``pending``.

    Must run in the same transaction as the status change.  Returns the
    nurse ids whose bids were rejected.
    """
    qs = Application.objects.filter(request_id=request_id, status=Application.STATUS_PENDING)
    if keep_id is not None:
        qs = qs.exclude(pk=keep_id)
    nurse_ids = list(qs.values_list('nurse_id', flat=True))
    if nurse_ids:
        qs.update(status=Application.STATUS_REJECTED, updated_at=now)
    return nurse_ids


def notify_rejected_bidders(req: ServiceRequest, nurse_ids) -> None:
    for nurse_id in nurse_ids:
        notify(nurse_id, req.pk, Notification.KIND_APPLICATION_REJECTED, title=req.title)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_requests(user: User, *, status: Optional[str] = None, page: int = 1, page_size: int = 20):
    qs = ServiceRequest.objects.all()
    role = getattr(user, 'role', None)
    if role == lifecycle.PATIENT:
        qs = qs.filter(patient=user)
    elif role == lifecycle.NURSE:
        qs = qs.filter(Q(nurse=user) | Q(status=ServiceRequest.STATUS_PENDING))
    elif role == lifecycle.ADMIN:
        pass
    else:
        qs = qs.none()

    if status:
        qs = qs.filter(status=status)

    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    items = qs.select_related('patient', 'nurse').order_by('-created_at', '-id')[start:start + page_size]
    return [format_request(r) for r in items], total


def get_request(user: User, request_id) -> ServiceRequest:
    req = load_request(request_id)
    if not can_view(user, req):
        raise Forbidden('You do not have permission to view this request.')
    return req


def request_history(user: User, request_id) -> list:
    req = get_request(user, request_id)
    return [
        {
            'action': t.action,
            'from': t.from_status,
            'to': t.to_status,
            'operatorId': t.operator_id,
            'reason': t.reason,
            'timestamp': _iso(t.timestamp),
        }
        for t in req.transitions.order_by('timestamp', 'id')
    ]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def create_request(patient: User, **fields) -> ServiceRequest:
    lifecycle.check(patient, None, lifecycle.CREATE)
    data = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    with transaction.atomic():
        req = ServiceRequest.objects.create(patient=patient, status=ServiceRequest.STATUS_PENDING, **data)
        record_transition(req, lifecycle.CREATE, None, req.status, patient)
    return req


def update_request(user: User, request_id, **fields) -> ServiceRequest:
    """Edit the descriptive fields of a request that is still pending."""
    req = load_request(request_id)
    if user.role != lifecycle.PATIENT or not lifecycle.same_identity(user, req.patient_id):
        raise Forbidden('You can only edit your own requests.')
    if req.status != ServiceRequest.STATUS_PENDING:
        raise InvalidTransition(req.status, 'edit', 'Only pending requests can be edited.')
    data = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if data:
        updated = ServiceRequest.objects.filter(pk=req.pk, status=ServiceRequest.STATUS_PENDING).update(
            updated_at=timezone.now(), **data
        )
        if not updated:
            fresh = load_request(req.pk)
            raise InvalidTransition(fresh.status, 'edit', 'Only pending requests can be edited.')
    return load_request(req.pk)


def accept_request(nurse: User, request_id) -> ServiceRequest:
    """A verified nurse takes a pending request directly."""
    req = load_request(request_id)
    lifecycle.check(nurse, req, lifecycle.ACCEPT)
    now = timezone.now()
    with transaction.atomic():
        if not claim_request(req.pk, nurse.pk, now):
            raise_stale(nurse, req.pk, lifecycle.ACCEPT)
        # the nurse's own live bid, if any, becomes the accepted one
        Application.objects.filter(
            request_id=req.pk, nurse_id=nurse.pk, status=Application.STATUS_PENDING
        ).update(status=Application.STATUS_ACCEPTED, updated_at=now)
        rejected = close_open_applications(req.pk, now=now)
        record_transition(req, lifecycle.ACCEPT, req.status, ServiceRequest.STATUS_ACCEPTED, nurse)
    req = load_request(req.pk)
    notify(req.patient_id, req.pk, Notification.KIND_REQUEST_ACCEPTED, title=req.title, actor=display_name(nurse))
    notify_rejected_bidders(req, rejected)
    return req


def start_request(nurse: User, request_id) -> ServiceRequest:
    req = load_request(request_id)
    lifecycle.check(nurse, req, lifecycle.START)
    now = timezone.now()
    with transaction.atomic():
        if not _compare_and_set(req, ServiceRequest.STATUS_IN_PROGRESS, now, started_at=now):
            raise_stale(nurse, req.pk, lifecycle.START)
        record_transition(req, lifecycle.START, req.status, ServiceRequest.STATUS_IN_PROGRESS, nurse)
    req = load_request(req.pk)
    notify(req.patient_id, req.pk, Notification.KIND_REQUEST_STARTED, title=req.title)
    return req


def cancel_request(user: User, request_id, reason: Optional[str] = None) -> ServiceRequest:
    req = load_request(request_id)
    lifecycle.check(user, req, lifecycle.CANCEL)
    reason = (reason or '').strip()
    if not reason:
        reason = settings.CANCEL_FALLBACK_REASON if user.role == lifecycle.ADMIN else settings.PATIENT_CANCEL_REASON
    now = timezone.now()
    with transaction.atomic():
        if not _compare_and_set(
            req, ServiceRequest.STATUS_CANCELLED, now, cancelled_at=now, cancellation_reason=reason[:255]
        ):
            raise_stale(user, req.pk, lifecycle.CANCEL)
        rejected = close_open_applications(req.pk, now=now)
        record_transition(req, lifecycle.CANCEL, req.status, ServiceRequest.STATUS_CANCELLED, user, reason)
    req = load_request(req.pk)
    for party_id in (req.patient_id, req.nurse_id):
        if party_id and not lifecycle.same_identity(user, party_id):
            notify(party_id, req.pk, Notification.KIND_REQUEST_CANCELLED, title=req.title, reason=reason)
    notify_rejected_bidders(req, rejected)
    return req


def confirm_complete(user: User, request_id, side: str) -> Tuple[ServiceRequest, bool]:
    """Record one party's completion confirmation.

    ``side`` is ``'provider'`` or ``'patient'``.  Returns the fresh request
    and whether this call is the one that completed it.  Confirming twice
    from the same side is a no-op.
    """
    try:
        transition, own_flag, own_at, other_flag = _CONFIRM_SIDES[side]
    except KeyError:
        raise BadRequest(f'Unknown confirmation side: {side}')
    req = load_request(request_id)
    lifecycle.check(user, req, transition)
    now = timezone.now()
    other_done = Q(**{other_flag: True})
    with transaction.atomic():
        updated = ServiceRequest.objects.filter(
            pk=req.pk, status=ServiceRequest.STATUS_IN_PROGRESS, **{own_flag: False}
        ).update(
            **{own_flag: True, own_at: now},
            status=Case(
                When(other_done, then=Value(ServiceRequest.STATUS_COMPLETED)),
                default=F('status'),
                output_field=models.CharField(),
            ),
            completed_at=Case(
                When(other_done, then=Value(now, output_field=models.DateTimeField())),
                default=F('completed_at'),
                output_field=models.DateTimeField(),
            ),
            updated_at=now,
        )
        req = load_request(req.pk)
        if not updated:
            if req.status == ServiceRequest.STATUS_IN_PROGRESS and getattr(req, own_flag):
                return req, False
            lifecycle.check(user, req, transition)
            raise InvalidTransition(req.status, ServiceRequest.STATUS_COMPLETED)
        completed = req.status == ServiceRequest.STATUS_COMPLETED
        record_transition(req, transition, ServiceRequest.STATUS_IN_PROGRESS, req.status, user)
    if completed:
        for party_id in (req.patient_id, req.nurse_id):
            notify(party_id, req.pk, Notification.KIND_REQUEST_COMPLETED, title=req.title)
    return req, completed


def change_status(user: User, request_id, status: str, reason: Optional[str] = None) -> ServiceRequest:
    """Route a ``PATCH .../status`` body to the matching transition."""
    if status == ServiceRequest.STATUS_ACCEPTED:
        return accept_request(user, request_id)
    if status == ServiceRequest.STATUS_IN_PROGRESS:
        return start_request(user, request_id)
    if status == ServiceRequest.STATUS_CANCELLED:
        return cancel_request(user, request_id, reason)
    if status == ServiceRequest.STATUS_COMPLETED:
        side = 'patient' if user.role == lifecycle.PATIENT else 'provider'
        req, _ = confirm_complete(user, request_id, side)
        return req
    if status == ServiceRequest.STATUS_PENDING:
        req = load_request(request_id)
        raise InvalidTransition(req.status, ServiceRequest.STATUS_PENDING)
    raise BadRequest('Invalid request status.')
