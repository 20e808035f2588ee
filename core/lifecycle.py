"""
Request lifecycle rules and the authorization matrix.

Everything in this module is a pure function of in-memory snapshots: an
actor (anything with ``id``, ``role`` and ``verification_status``), a
request (``status``, ``patient_id``, ``nurse_id``) and, for bid actions, an
application (``status``, ``nurse_id``).  Nothing here touches the database,
so the whole role x state x transition table can be checked without one.

Legality of a transition depends only on state; entitlement depends only on
who the actor is relative to the request.  :func:`check` evaluates state
first so that callers get ``InvalidTransition`` for a move that nobody could
make from here and ``Forbidden`` for a move that somebody else could make.
"""
from __future__ import annotations

from typing import Any, Optional

from .exceptions import Forbidden, InvalidTransition, NotVerified

PATIENT = 'patient'
NURSE = 'nurse'
ADMIN = 'admin'

VERIFIED = 'verified'

PENDING = 'pending'
ACCEPTED = 'accepted'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

# Request transitions
CREATE = 'create'
ACCEPT = 'accept'
START = 'start'
PROVIDER_CONFIRM = 'provider_confirm_complete'
PATIENT_CONFIRM = 'patient_confirm_complete'
CANCEL = 'cancel'

# Bid ledger actions
SUBMIT_APPLICATION = 'submit_application'
ACCEPT_APPLICATION = 'accept_application'
REJECT_APPLICATION = 'reject_application'
WITHDRAW_APPLICATION = 'withdraw_application'

REQUEST_TRANSITIONS = (CREATE, ACCEPT, START, PROVIDER_CONFIRM, PATIENT_CONFIRM, CANCEL)
APPLICATION_TRANSITIONS = (SUBMIT_APPLICATION, ACCEPT_APPLICATION, REJECT_APPLICATION, WITHDRAW_APPLICATION)
ALL_TRANSITIONS = REQUEST_TRANSITIONS + APPLICATION_TRANSITIONS

REQUEST_STATES = (PENDING, ACCEPTED, IN_PROGRESS, COMPLETED, CANCELLED)
TERMINAL_STATES = (COMPLETED, CANCELLED)

# Request states each transition may start from.  ``None`` stands for
# "no request yet" (creation).
LEGAL_FROM: dict[str, frozenset] = {
    CREATE: frozenset({None}),
    ACCEPT: frozenset({PENDING}),
    START: frozenset({ACCEPTED}),
    PROVIDER_CONFIRM: frozenset({IN_PROGRESS}),
    PATIENT_CONFIRM: frozenset({IN_PROGRESS}),
    CANCEL: frozenset({PENDING, IN_PROGRESS}),
    SUBMIT_APPLICATION: frozenset({PENDING}),
    ACCEPT_APPLICATION: frozenset({PENDING}),
    REJECT_APPLICATION: frozenset(REQUEST_STATES),
    WITHDRAW_APPLICATION: frozenset(REQUEST_STATES),
}

# Bid actions that act on an existing bid, which must still be pending.
_NEEDS_PENDING_BID = (ACCEPT_APPLICATION, REJECT_APPLICATION, WITHDRAW_APPLICATION)

# Status a request ends up in after each transition.
TARGET_STATUS = {
    CREATE: PENDING,
    ACCEPT: ACCEPTED,
    START: IN_PROGRESS,
    PROVIDER_CONFIRM: COMPLETED,
    PATIENT_CONFIRM: COMPLETED,
    CANCEL: CANCELLED,
    ACCEPT_APPLICATION: ACCEPTED,
}


def identity_of(value: Any) -> Optional[int]:
    """Normalise a user reference (model instance, pk, numeric string) to an int."""
    if value is None:
        return None
    value = getattr(value, 'pk', value)
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def same_identity(left: Any, right: Any) -> bool:
    """True when both references point at the same user."""
    a, b = identity_of(left), identity_of(right)
    return a is not None and a == b


def _status_of(request) -> Optional[str]:
    return getattr(request, 'status', None) if request is not None else None


def is_legal(request, transition: str, application=None) -> bool:
    """Whether ``transition`` may happen from the request's current state."""
    allowed = LEGAL_FROM.get(transition)
    if allowed is None:
        return False
    if _status_of(request) not in allowed:
        return False
    if transition in _NEEDS_PENDING_BID:
        return application is not None and getattr(application, 'status', None) == PENDING
    return True


def is_entitled(actor, request, transition: str, application=None) -> bool:
    """Whether ``actor`` is the kind of party that may trigger ``transition``."""
    if actor is None:
        return False
    role = getattr(actor, 'role', None)
    actor_id = getattr(actor, 'pk', None) or getattr(actor, 'id', None)
    verified = getattr(actor, 'verification_status', None) == VERIFIED
    owner_id = getattr(request, 'patient_id', None) if request is not None else None
    assignee_id = getattr(request, 'nurse_id', None) if request is not None else None

    if transition == CREATE:
        return role == PATIENT
    if transition == ACCEPT:
        return role == NURSE and verified
    if transition in (START, PROVIDER_CONFIRM):
        return role == NURSE and same_identity(actor_id, assignee_id)
    if transition == PATIENT_CONFIRM:
        return role == PATIENT and same_identity(actor_id, owner_id)
    if transition == CANCEL:
        return role == ADMIN or (role == PATIENT and same_identity(actor_id, owner_id))
    if transition == SUBMIT_APPLICATION:
        return role == NURSE and verified
    if transition == ACCEPT_APPLICATION:
        return role == PATIENT and same_identity(actor_id, owner_id)
    if transition == REJECT_APPLICATION:
        return role == ADMIN or (role == PATIENT and same_identity(actor_id, owner_id))
    if transition == WITHDRAW_APPLICATION:
        bidder_id = getattr(application, 'nurse_id', None) if application is not None else None
        return role == NURSE and same_identity(actor_id, bidder_id)
    return False


def can_perform(actor, request, transition: str, application=None) -> bool:
    """The authorization matrix: legal from this state *and* allowed for this actor."""
    return is_legal(request, transition, application) and is_entitled(actor, request, transition, application)


def check(actor, request, transition: str, application=None) -> None:
    """Raise the appropriate error unless ``actor`` may perform ``transition``."""
    if not is_legal(request, transition, application):
        current = _status_of(request)
        if transition in _NEEDS_PENDING_BID and current in LEGAL_FROM[transition] and application is not None:
            raise InvalidTransition(
                current=application.status,
                target=transition,
                detail=f'Only pending applications can be {_past(transition)}; this one is {application.status}.',
            )
        raise InvalidTransition(current=current, target=TARGET_STATUS.get(transition, transition))
    if is_entitled(actor, request, transition, application):
        return
    if (
        transition in (ACCEPT, SUBMIT_APPLICATION)
        and getattr(actor, 'role', None) == NURSE
        and getattr(actor, 'verification_status', None) != VERIFIED
    ):
        raise NotVerified()
    raise Forbidden(_FORBIDDEN_DETAIL.get(transition, Forbidden.default_detail))


def _past(transition: str) -> str:
    return {
        ACCEPT_APPLICATION: 'accepted',
        REJECT_APPLICATION: 'rejected',
        WITHDRAW_APPLICATION: 'withdrawn',
    }.get(transition, transition)


_FORBIDDEN_DETAIL = {
    CREATE: 'Only patients can create service requests.',
    ACCEPT: 'Only verified nurses can accept requests.',
    START: 'Only the assigned nurse can start this request.',
    PROVIDER_CONFIRM: 'Only the assigned nurse can confirm completion as provider.',
    PATIENT_CONFIRM: 'Only the patient who created this request can confirm completion.',
    CANCEL: 'Only the owning patient or an administrator can cancel this request.',
    SUBMIT_APPLICATION: 'Only nurses can apply to requests.',
    ACCEPT_APPLICATION: 'Only the patient who owns this request can accept applications.',
    REJECT_APPLICATION: 'Only the owning patient or an administrator can reject applications.',
    WITHDRAW_APPLICATION: 'You can only withdraw your own applications.',
}
