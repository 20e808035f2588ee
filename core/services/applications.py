from decimal import Decimal
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone
from loguru import logger

from core import lifecycle
from core.exceptions import (
    BadRequest, DuplicateApplication, Forbidden, InvalidTransition, NotFound, NotVerified, RequestNotOpen,
)
from core.models import Application, Notification, ServiceRequest, User
from core.services.audit import log_action
from core.services.notifications import notify
from core.services.requests import (
    claim_request, close_open_applications, display_name, load_request, notify_rejected_bidders,
    record_transition,
)


def _iso(value):
    return value.isoformat() if value else None


def format_application(app: Application, *, include_request: bool = False) -> dict:
    data = {
        'id': app.id,
        'requestId': app.request_id,
        'nurseId': app.nurse_id,
        'nurseName': display_name(app.nurse),
        'price': float(app.price),
        'estimatedTime': app.estimated_time,
        'status': app.status,
        'createdAt': _iso(app.created_at),
        'updatedAt': _iso(app.updated_at),
    }
    if include_request:
        req = app.request
        data['request'] = {
            'id': req.id,
            'title': req.title,
            'serviceType': req.service_type,
            'status': req.status,
            'address': req.address,
            'scheduledDate': _iso(req.scheduled_date),
            'urgencyLevel': req.urgency_level,
        }
    return data


def load_application(application_id) -> Application:
    app = Application.objects.select_related('request', 'nurse').filter(pk=application_id).first()
    if app is None:
        raise NotFound('Application not found.')
    return app


def _stale_application(application_id, transition: str):
    fresh = Application.objects.filter(pk=application_id).first()
    if fresh is None:
        raise NotFound('Application not found.')
    raise InvalidTransition(fresh.status, transition, f'This application is already {fresh.status}.')


def submit_application(nurse: User, request_id, price: Decimal, estimated_time: int) -> Application:
    if getattr(nurse, 'role', None) != lifecycle.NURSE:
        raise Forbidden('Only nurses can apply to requests.')
    if nurse.verification_status != User.VERIFICATION_VERIFIED:
        raise NotVerified()
    try:
        with transaction.atomic():
            # row lock keeps a concurrent accept from slipping in between check and insert
            req = load_request(request_id, for_update=True)
            if not lifecycle.is_legal(req, lifecycle.SUBMIT_APPLICATION):
                raise RequestNotOpen()
            if Application.objects.filter(
                request_id=req.pk, nurse_id=nurse.pk, status=Application.STATUS_PENDING
            ).exists():
                raise DuplicateApplication()
            app = Application.objects.create(
                request=req, nurse=nurse, price=price, estimated_time=estimated_time
            )
    except IntegrityError:
        raise DuplicateApplication()

    logger.info("Nurse {} bid {} on request {} (application {})", nurse.pk, price, req.pk, app.pk)
    log_action(
        user=nurse, action='application.submit', object_type='application', object_id=app.pk,
        detail={'requestId': req.pk, 'price': str(price), 'estimatedTime': estimated_time},
    )
    notify(req.patient_id, req.pk, Notification.KIND_APPLICATION_RECEIVED, title=req.title, actor=display_name(nurse))
    return load_application(app.pk)


def accept_application(patient: User, application_id) -> Application:
    """Accept one bid: claim the request for the bidder and reject every other bid."""
    app = load_application(application_id)
    req = app.request
    lifecycle.check(patient, req, lifecycle.ACCEPT_APPLICATION, application=app)
    if app.nurse.verification_status != User.VERIFICATION_VERIFIED:
        raise NotVerified('The nurse who placed this bid is no longer verified.')

    now = timezone.now()
    with transaction.atomic():
        if not claim_request(req.pk, app.nurse_id, now):
            fresh = load_request(req.pk)
            raise InvalidTransition(fresh.status, ServiceRequest.STATUS_ACCEPTED)
        flipped = Application.objects.filter(pk=app.pk, status=Application.STATUS_PENDING).update(
            status=Application.STATUS_ACCEPTED, updated_at=now
        )
        if not flipped:
            # the bid was withdrawn or rejected meanwhile; leaving the block undoes the claim
            _stale_application(app.pk, lifecycle.ACCEPT_APPLICATION)
        rejected = close_open_applications(req.pk, now=now, keep_id=app.pk)
        record_transition(req, lifecycle.ACCEPT_APPLICATION, req.status, ServiceRequest.STATUS_ACCEPTED, patient)

    log_action(
        user=patient, action='application.accept', object_type='application', object_id=app.pk,
        detail={'requestId': req.pk, 'rejected': len(rejected)},
    )
    notify(app.nurse_id, req.pk, Notification.KIND_APPLICATION_ACCEPTED, title=req.title)
    notify_rejected_bidders(req, rejected)
    return load_application(app.pk)


def reject_application(actor: User, application_id) -> Application:
    app = load_application(application_id)
    lifecycle.check(actor, app.request, lifecycle.REJECT_APPLICATION, application=app)
    updated = Application.objects.filter(pk=app.pk, status=Application.STATUS_PENDING).update(
        status=Application.STATUS_REJECTED, updated_at=timezone.now()
    )
    if not updated:
        _stale_application(app.pk, lifecycle.REJECT_APPLICATION)
    log_action(user=actor, action='application.reject', object_type='application', object_id=app.pk,
               detail={'requestId': app.request_id})
    notify(app.nurse_id, app.request_id, Notification.KIND_APPLICATION_REJECTED, title=app.request.title)
    return load_application(app.pk)


def withdraw_application(nurse: User, application_id) -> None:
    app = load_application(application_id)
    lifecycle.check(nurse, app.request, lifecycle.WITHDRAW_APPLICATION, application=app)
    deleted, _ = Application.objects.filter(pk=app.pk, status=Application.STATUS_PENDING).delete()
    if not deleted:
        _stale_application(app.pk, lifecycle.WITHDRAW_APPLICATION)
    logger.info("Nurse {} withdrew application {} on request {}", nurse.pk, app.pk, app.request_id)
    log_action(user=nurse, action='application.withdraw', object_type='application', object_id=app.pk,
               detail={'requestId': app.request_id})


def update_application(nurse: User, application_id, *, price: Optional[Decimal] = None,
                       estimated_time: Optional[int] = None) -> Application:
    """Revise the price or duration of a still-pending bid on a still-open request."""
    app = load_application(application_id)
    if not lifecycle.same_identity(nurse, app.nurse_id):
        raise Forbidden('You can only edit your own applications.')
    if app.status != Application.STATUS_PENDING:
        raise InvalidTransition(app.status, 'edit', f'This application is already {app.status}.')
    if app.request.status != ServiceRequest.STATUS_PENDING:
        raise RequestNotOpen()
    changes = {}
    if price is not None:
        changes['price'] = price
    if estimated_time is not None:
        changes['estimated_time'] = estimated_time
    if changes:
        updated = Application.objects.filter(pk=app.pk, status=Application.STATUS_PENDING).update(
            updated_at=timezone.now(), **changes
        )
        if not updated:
            _stale_application(app.pk, 'edit')
    return load_application(app.pk)


def change_application_status(actor: User, application_id, status: str) -> Application:
    if status == Application.STATUS_ACCEPTED:
        return accept_application(actor, application_id)
    if status == Application.STATUS_REJECTED:
        return reject_application(actor, application_id)
    raise BadRequest('Application status must be "accepted" or "rejected".')


def list_for_request(user: User, request_id) -> list:
    req = load_request(request_id)
    if user.role != lifecycle.ADMIN and not lifecycle.same_identity(user, req.patient_id):
        raise Forbidden('Only the patient who owns this request can view its applications.')
    qs = Application.objects.filter(request_id=req.pk).select_related('nurse').order_by('created_at', 'id')
    return [format_application(a) for a in qs]


def list_for_nurse(nurse: User, *, status: Optional[str] = None) -> list:
    if getattr(nurse, 'role', None) != lifecycle.NURSE:
        raise Forbidden('Only nurses have applications.')
    qs = Application.objects.filter(nurse=nurse).select_related('request', 'nurse')
    if status:
        qs = qs.filter(status=status)
    return [format_application(a, include_request=True) for a in qs.order_by('-created_at', '-id')]
