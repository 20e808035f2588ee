"""
Authorization matrix tests.

``core.lifecycle`` works on plain snapshots, so these run without a
database: every actor x request state x transition combination is checked
against the table below.
"""
from types import SimpleNamespace

import pytest

from core import lifecycle
from core.exceptions import Forbidden, InvalidTransition, NotVerified

OWNER_ID, OTHER_PATIENT_ID = 1, 2
ASSIGNED_ID, BIDDER_ID, UNVERIFIED_ID = 10, 11, 12
ADMIN_ID = 99

ACTORS = {
    'owner': SimpleNamespace(id=OWNER_ID, pk=OWNER_ID, role='patient', verification_status='verified'),
    'other_patient': SimpleNamespace(id=OTHER_PATIENT_ID, pk=OTHER_PATIENT_ID, role='patient',
                                     verification_status='verified'),
    'assigned_nurse': SimpleNamespace(id=ASSIGNED_ID, pk=ASSIGNED_ID, role='nurse', verification_status='verified'),
    'bidder': SimpleNamespace(id=BIDDER_ID, pk=BIDDER_ID, role='nurse', verification_status='verified'),
    'unverified_nurse': SimpleNamespace(id=UNVERIFIED_ID, pk=UNVERIFIED_ID, role='nurse',
                                        verification_status='pending'),
    'admin': SimpleNamespace(id=ADMIN_ID, pk=ADMIN_ID, role='admin', verification_status='verified'),
}

# state -> transition -> actors allowed; anything missing is refused
ALLOWED = {
    'pending': {
        'accept': {'assigned_nurse', 'bidder'},
        'cancel': {'owner', 'admin'},
        'submit_application': {'assigned_nurse', 'bidder'},
        'accept_application': {'owner'},
        'reject_application': {'owner', 'admin'},
        'withdraw_application': {'bidder'},
    },
    'accepted': {
        'start': {'assigned_nurse'},
        'reject_application': {'owner', 'admin'},
        'withdraw_application': {'bidder'},
    },
    'in_progress': {
        'provider_confirm_complete': {'assigned_nurse'},
        'patient_confirm_complete': {'owner'},
        'cancel': {'owner', 'admin'},
        'reject_application': {'owner', 'admin'},
        'withdraw_application': {'bidder'},
    },
    'completed': {
        'reject_application': {'owner', 'admin'},
        'withdraw_application': {'bidder'},
    },
    'cancelled': {
        'reject_application': {'owner', 'admin'},
        'withdraw_application': {'bidder'},
    },
}

EXISTING_REQUEST_TRANSITIONS = [t for t in lifecycle.ALL_TRANSITIONS if t != lifecycle.CREATE]


def snapshot(status, nurse_id=ASSIGNED_ID):
    return SimpleNamespace(status=status, patient_id=OWNER_ID, nurse_id=nurse_id)


def pending_bid(nurse_id=BIDDER_ID):
    return SimpleNamespace(status='pending', nurse_id=nurse_id)


@pytest.mark.parametrize('state', lifecycle.REQUEST_STATES)
@pytest.mark.parametrize('transition', EXISTING_REQUEST_TRANSITIONS)
@pytest.mark.parametrize('actor_name', sorted(ACTORS))
def test_matrix(state, transition, actor_name):
    expected = actor_name in ALLOWED[state].get(transition, set())
    got = lifecycle.can_perform(ACTORS[actor_name], snapshot(state), transition, application=pending_bid())
    assert got is expected


@pytest.mark.parametrize('actor_name', sorted(ACTORS))
def test_only_patients_create(actor_name):
    assert lifecycle.can_perform(ACTORS[actor_name], None, lifecycle.CREATE) is (actor_name in ('owner', 'other_patient'))


@pytest.mark.parametrize('bid_status', ['accepted', 'rejected'])
@pytest.mark.parametrize('transition', ['accept_application', 'reject_application', 'withdraw_application'])
def test_settled_bids_cannot_move(bid_status, transition):
    bid = SimpleNamespace(status=bid_status, nurse_id=BIDDER_ID)
    for actor in ACTORS.values():
        assert not lifecycle.can_perform(actor, snapshot('pending'), transition, application=bid)


def test_bid_actions_need_a_bid():
    assert not lifecycle.is_legal(snapshot('pending'), lifecycle.ACCEPT_APPLICATION)
    assert not lifecycle.is_legal(snapshot('pending'), lifecycle.WITHDRAW_APPLICATION)


def test_unknown_transition_is_never_legal():
    assert not lifecycle.can_perform(ACTORS['admin'], snapshot('pending'), 'teleport')


def test_cancel_completed_is_invalid_transition_not_forbidden():
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.check(ACTORS['owner'], snapshot('completed'), lifecycle.CANCEL)
    assert exc.value.current == 'completed'
    assert exc.value.target == 'cancelled'


def test_state_is_checked_before_identity():
    # a stranger on a terminal request learns about the state, not about permissions
    with pytest.raises(InvalidTransition):
        lifecycle.check(ACTORS['other_patient'], snapshot('cancelled'), lifecycle.CANCEL)


def test_stranger_cancel_on_pending_is_forbidden():
    with pytest.raises(Forbidden):
        lifecycle.check(ACTORS['other_patient'], snapshot('pending', nurse_id=None), lifecycle.CANCEL)


def test_admin_cannot_cancel_accepted():
    with pytest.raises(InvalidTransition):
        lifecycle.check(ACTORS['admin'], snapshot('accepted'), lifecycle.CANCEL)


@pytest.mark.parametrize('transition', [lifecycle.ACCEPT, lifecycle.SUBMIT_APPLICATION])
def test_unverified_nurse_gets_not_verified(transition):
    with pytest.raises(NotVerified):
        lifecycle.check(ACTORS['unverified_nurse'], snapshot('pending', nurse_id=None), transition)


def test_patient_accept_is_forbidden_not_not_verified():
    with pytest.raises(Forbidden) as exc:
        lifecycle.check(ACTORS['owner'], snapshot('pending', nurse_id=None), lifecycle.ACCEPT)
    assert not isinstance(exc.value, NotVerified)


def test_only_assigned_nurse_confirms_as_provider():
    with pytest.raises(Forbidden):
        lifecycle.check(ACTORS['bidder'], snapshot('in_progress'), lifecycle.PROVIDER_CONFIRM)
    lifecycle.check(ACTORS['assigned_nurse'], snapshot('in_progress'), lifecycle.PROVIDER_CONFIRM)


def test_settled_bid_reports_bid_status():
    bid = SimpleNamespace(status='rejected', nurse_id=BIDDER_ID)
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.check(ACTORS['owner'], snapshot('pending'), lifecycle.ACCEPT_APPLICATION, application=bid)
    assert exc.value.current == 'rejected'


@pytest.mark.parametrize('left,right,same', [
    (10, 10, True),
    (10, '10', True),
    (SimpleNamespace(pk=10), 10, True),
    (10, 11, False),
    (None, None, False),
    ('abc', 'abc', False),
    (True, 1, False),
])
def test_same_identity(left, right, same):
    assert lifecycle.same_identity(left, right) is same
