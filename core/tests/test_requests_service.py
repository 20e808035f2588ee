from decimal import Decimal

import pytest
from django.utils import timezone

from core.exceptions import BadRequest, Forbidden, InvalidTransition, NotFound, NotVerified
from core import lifecycle
from core.models import Application, Notification, RequestTransition, ServiceRequest
from core.services import applications as ledger
from core.services import requests as engine

pytestmark = pytest.mark.django_db


@pytest.fixture
def in_progress(open_request, nurse):
    engine.accept_request(nurse, open_request.pk)
    return engine.start_request(nurse, open_request.pk)


def test_create_sets_owner_and_pending(open_request, patient):
    assert open_request.status == ServiceRequest.STATUS_PENDING
    assert open_request.patient_id == patient.id
    assert open_request.nurse_id is None
    assert RequestTransition.objects.filter(request=open_request, action='create').exists()


def test_nurse_cannot_create(make_request, nurse):
    with pytest.raises(Forbidden):
        make_request(owner=nurse)


def test_direct_accept_assigns_nurse(open_request, nurse, patient):
    req = engine.accept_request(nurse, open_request.pk)
    assert req.status == ServiceRequest.STATUS_ACCEPTED
    assert req.nurse_id == nurse.id
    assert req.accepted_at is not None
    assert Notification.objects.filter(user=patient, kind=Notification.KIND_REQUEST_ACCEPTED).count() == 1


def test_unverified_nurse_cannot_accept(open_request, unverified_nurse):
    with pytest.raises(NotVerified):
        engine.accept_request(unverified_nurse, open_request.pk)
    open_request.refresh_from_db()
    assert open_request.status == ServiceRequest.STATUS_PENDING


def test_second_accept_loses(open_request, nurse, nurse2):
    engine.accept_request(nurse, open_request.pk)
    with pytest.raises(InvalidTransition) as exc:
        engine.accept_request(nurse2, open_request.pk)
    assert exc.value.current == ServiceRequest.STATUS_ACCEPTED
    open_request.refresh_from_db()
    assert open_request.nurse_id == nurse.id


def test_claim_is_conditional(open_request, nurse, nurse2):
    now = timezone.now()
    assert engine.claim_request(open_request.pk, nurse.pk, now) is True
    assert engine.claim_request(open_request.pk, nurse2.pk, now) is False
    open_request.refresh_from_db()
    assert open_request.nurse_id == nurse.id


def test_direct_accept_rejects_open_bids(open_request, nurse, nurse2):
    own = ledger.submit_application(nurse, open_request.pk, Decimal('150'), 3)
    other = ledger.submit_application(nurse2, open_request.pk, Decimal('170'), 4)
    engine.accept_request(nurse, open_request.pk)
    own.refresh_from_db()
    other.refresh_from_db()
    assert own.status == Application.STATUS_ACCEPTED
    assert other.status == Application.STATUS_REJECTED


def test_only_assigned_nurse_starts(open_request, nurse, nurse2):
    engine.accept_request(nurse, open_request.pk)
    with pytest.raises(Forbidden):
        engine.start_request(nurse2, open_request.pk)
    req = engine.start_request(nurse, open_request.pk)
    assert req.status == ServiceRequest.STATUS_IN_PROGRESS
    assert req.started_at is not None


def test_start_pending_is_invalid(open_request, nurse):
    with pytest.raises(InvalidTransition):
        engine.start_request(nurse, open_request.pk)


def test_provider_then_patient_completes(in_progress, nurse, patient):
    req, completed = engine.confirm_complete(nurse, in_progress.pk, 'provider')
    assert completed is False
    assert req.status == ServiceRequest.STATUS_IN_PROGRESS
    assert req.provider_confirmed_complete and not req.patient_confirmed_complete

    req, completed = engine.confirm_complete(patient, in_progress.pk, 'patient')
    assert completed is True
    assert req.status == ServiceRequest.STATUS_COMPLETED
    assert req.completed_at is not None
    assert Notification.objects.filter(kind=Notification.KIND_REQUEST_COMPLETED).count() == 2


def test_patient_then_provider_completes(in_progress, nurse, patient):
    _, completed = engine.confirm_complete(patient, in_progress.pk, 'patient')
    assert completed is False
    req, completed = engine.confirm_complete(nurse, in_progress.pk, 'provider')
    assert completed is True
    assert req.status == ServiceRequest.STATUS_COMPLETED


def test_provider_confirm_completes_when_patient_confirms_concurrently(in_progress, nurse, patient, monkeypatch):
    real_check = lifecycle.check

    def check_then_patient_confirms(actor, request, transition, application=None):
        real_check(actor, request, transition, application=application)
        if transition == lifecycle.PROVIDER_CONFIRM:
            ServiceRequest.objects.filter(pk=request.pk).update(
                patient_confirmed_complete=True, patient_confirmed_at=timezone.now()
            )

    monkeypatch.setattr(lifecycle, 'check', check_then_patient_confirms)
    req, completed = engine.confirm_complete(nurse, in_progress.pk, 'provider')

    assert completed is True
    assert req.status == ServiceRequest.STATUS_COMPLETED
    assert req.provider_confirmed_complete and req.patient_confirmed_complete
    assert req.completed_at is not None
    assert Notification.objects.filter(kind=Notification.KIND_REQUEST_COMPLETED).count() == 2


def test_repeat_confirmation_is_noop(in_progress, nurse):
    first, _ = engine.confirm_complete(nurse, in_progress.pk, 'provider')
    again, completed = engine.confirm_complete(nurse, in_progress.pk, 'provider')
    assert completed is False
    assert again.status == ServiceRequest.STATUS_IN_PROGRESS
    assert again.provider_confirmed_at == first.provider_confirmed_at
    assert RequestTransition.objects.filter(request=in_progress, action='provider_confirm_complete').count() == 1


def test_confirm_wrong_side_is_forbidden(in_progress, patient, nurse):
    with pytest.raises(Forbidden):
        engine.confirm_complete(patient, in_progress.pk, 'provider')
    with pytest.raises(Forbidden):
        engine.confirm_complete(nurse, in_progress.pk, 'patient')


def test_confirm_before_start_is_invalid(open_request, nurse):
    engine.accept_request(nurse, open_request.pk)
    with pytest.raises(InvalidTransition):
        engine.confirm_complete(nurse, open_request.pk, 'provider')


def test_confirm_after_completion_is_invalid(in_progress, nurse, patient):
    engine.confirm_complete(nurse, in_progress.pk, 'provider')
    engine.confirm_complete(patient, in_progress.pk, 'patient')
    with pytest.raises(InvalidTransition):
        engine.confirm_complete(nurse, in_progress.pk, 'provider')


def test_patient_cancels_with_default_reason(open_request, patient, settings):
    req = engine.cancel_request(patient, open_request.pk)
    assert req.status == ServiceRequest.STATUS_CANCELLED
    assert req.cancellation_reason == settings.PATIENT_CANCEL_REASON
    assert req.cancelled_at is not None


def test_admin_cancel_uses_fallback_reason(in_progress, admin, patient, nurse, settings):
    req = engine.cancel_request(admin, in_progress.pk)
    assert req.cancellation_reason == settings.CANCEL_FALLBACK_REASON
    # both parties hear about it, the nurse stays on record
    assert req.nurse_id == nurse.id
    assert Notification.objects.filter(kind=Notification.KIND_REQUEST_CANCELLED).count() == 2


def test_admin_cancel_keeps_supplied_reason(open_request, admin):
    req = engine.cancel_request(admin, open_request.pk, 'Duplicate posting')
    assert req.cancellation_reason == 'Duplicate posting'


def test_cancel_rejects_open_bids(open_request, patient, nurse, nurse2):
    ledger.submit_application(nurse, open_request.pk, Decimal('100'), 2)
    ledger.submit_application(nurse2, open_request.pk, Decimal('120'), 2)
    engine.cancel_request(patient, open_request.pk, 'Family will help')
    assert not Application.objects.filter(request=open_request, status=Application.STATUS_PENDING).exists()


def test_cancel_completed_is_invalid(in_progress, nurse, patient):
    engine.confirm_complete(nurse, in_progress.pk, 'provider')
    engine.confirm_complete(patient, in_progress.pk, 'patient')
    with pytest.raises(InvalidTransition) as exc:
        engine.cancel_request(patient, in_progress.pk)
    assert exc.value.current == ServiceRequest.STATUS_COMPLETED


def test_other_patient_cannot_cancel(open_request, other_patient):
    with pytest.raises(Forbidden):
        engine.cancel_request(other_patient, open_request.pk)


def test_nurse_cannot_cancel(open_request, nurse):
    engine.accept_request(nurse, open_request.pk)
    engine.start_request(nurse, open_request.pk)
    with pytest.raises(Forbidden):
        engine.cancel_request(nurse, open_request.pk)


def test_change_status_routes_completed_by_role(in_progress, nurse, patient):
    engine.change_status(nurse, in_progress.pk, 'completed')
    req = engine.change_status(patient, in_progress.pk, 'completed')
    assert req.status == ServiceRequest.STATUS_COMPLETED


def test_change_status_to_pending_is_invalid(open_request, patient):
    with pytest.raises(InvalidTransition):
        engine.change_status(patient, open_request.pk, 'pending')


def test_change_status_unknown_is_bad_request(open_request, patient):
    with pytest.raises(BadRequest):
        engine.change_status(patient, open_request.pk, 'archived')


def test_unknown_request_is_not_found(nurse):
    with pytest.raises(NotFound):
        engine.accept_request(nurse, 999999)


def test_notification_failure_does_not_undo_transition(open_request, nurse, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError('notification store down')

    monkeypatch.setattr(Notification.objects, 'create', boom)
    req = engine.accept_request(nurse, open_request.pk)
    assert req.status == ServiceRequest.STATUS_ACCEPTED
    open_request.refresh_from_db()
    assert open_request.nurse_id == nurse.id


def test_push_failure_does_not_undo_transition(open_request, nurse, settings, monkeypatch):
    from core.services import notifications

    settings.NOTIFY_PUSH_ENABLE = True

    def boom(note):
        raise ConnectionError('channel layer unavailable')

    monkeypatch.setattr(notifications, '_push', boom)
    req = engine.accept_request(nurse, open_request.pk)
    assert req.status == ServiceRequest.STATUS_ACCEPTED


def test_list_is_role_filtered(make_request, patient, other_patient, nurse, nurse2, admin):
    mine = make_request()
    theirs = make_request(owner=other_patient)
    taken = make_request(owner=other_patient)
    engine.accept_request(nurse2, taken.pk)

    ids = lambda user: {r['id'] for r in engine.list_requests(user)[0]}  # noqa: E731
    assert ids(patient) == {mine.pk}
    assert ids(nurse) == {mine.pk, theirs.pk}
    assert ids(nurse2) == {mine.pk, theirs.pk, taken.pk}
    assert ids(admin) == {mine.pk, theirs.pk, taken.pk}


def test_list_paginates(make_request, patient):
    for _ in range(3):
        make_request()
    data, total = engine.list_requests(patient, page=2, page_size=2)
    assert total == 3
    assert len(data) == 1


def test_detail_visibility(open_request, patient, other_patient, nurse, admin):
    assert engine.get_request(patient, open_request.pk).pk == open_request.pk
    assert engine.get_request(admin, open_request.pk).pk == open_request.pk
    with pytest.raises(Forbidden):
        engine.get_request(other_patient, open_request.pk)
    with pytest.raises(Forbidden):
        engine.get_request(nurse, open_request.pk)
    engine.accept_request(nurse, open_request.pk)
    assert engine.get_request(nurse, open_request.pk).nurse_id == nurse.id


def test_update_only_while_pending(open_request, patient, nurse):
    req = engine.update_request(patient, open_request.pk, title='Evening wound care', nurse_id=nurse.id)
    assert req.title == 'Evening wound care'
    assert req.nurse_id is None
    engine.accept_request(nurse, open_request.pk)
    with pytest.raises(InvalidTransition):
        engine.update_request(patient, open_request.pk, title='Too late now')


def test_history_lists_every_step(in_progress, patient):
    actions = [h['action'] for h in engine.request_history(patient, in_progress.pk)]
    assert actions == ['create', 'accept', 'start']
