from decimal import Decimal

from django.db.models import Count, Q, Sum

from core import lifecycle
from core.models import Application, ServiceRequest, User


def _status_counts(qs) -> dict:
    counts = {s: 0 for s, _ in ServiceRequest.STATUS_CHOICES}
    for row in qs.values('status').annotate(n=Count('id')):
        counts[row['status']] = row['n']
    return counts


def patient_stats(user: User) -> dict:
    counts = _status_counts(ServiceRequest.objects.filter(patient=user))
    return {
        'totalRequests': sum(counts.values()),
        'pendingRequests': counts[ServiceRequest.STATUS_PENDING],
        'acceptedRequests': counts[ServiceRequest.STATUS_ACCEPTED],
        'inProgressRequests': counts[ServiceRequest.STATUS_IN_PROGRESS],
        'completedRequests': counts[ServiceRequest.STATUS_COMPLETED],
        'cancelledRequests': counts[ServiceRequest.STATUS_CANCELLED],
    }


def nurse_stats(user: User) -> dict:
    counts = _status_counts(ServiceRequest.objects.filter(nurse=user))
    assigned = sum(counts.values())
    completed = counts[ServiceRequest.STATUS_COMPLETED]
    # earnings are simulated: accepted bid price on every completed engagement
    earnings = Application.objects.filter(
        nurse=user,
        status=Application.STATUS_ACCEPTED,
        request__status=ServiceRequest.STATUS_COMPLETED,
    ).aggregate(total=Sum('price'))['total'] or Decimal('0')
    return {
        'assignedRequests': assigned,
        'activeRequests': counts[ServiceRequest.STATUS_ACCEPTED] + counts[ServiceRequest.STATUS_IN_PROGRESS],
        'completedRequests': completed,
        'availableRequests': ServiceRequest.objects.filter(status=ServiceRequest.STATUS_PENDING).count(),
        'pendingApplications': Application.objects.filter(nurse=user, status=Application.STATUS_PENDING).count(),
        'completionRate': round(completed * 100.0 / assigned, 1) if assigned else 0.0,
        'earnings': float(earnings),
    }


def admin_stats() -> dict:
    counts = _status_counts(ServiceRequest.objects.all())
    users = User.objects.aggregate(
        total=Count('id'),
        nurses=Count('id', filter=Q(role=User.ROLE_NURSE)),
        unverified=Count('id', filter=Q(role=User.ROLE_NURSE) & ~Q(verification_status=User.VERIFICATION_VERIFIED)),
    )
    return {
        'totalRequests': sum(counts.values()),
        'requestsByStatus': counts,
        'totalUsers': users['total'],
        'totalNurses': users['nurses'],
        'nursesAwaitingVerification': users['unverified'],
    }


def stats_for(user: User) -> dict:
    role = getattr(user, 'role', None)
    if role == lifecycle.PATIENT:
        return patient_stats(user)
    if role == lifecycle.NURSE:
        return nurse_stats(user)
    if role == lifecycle.ADMIN:
        return admin_stats()
    return {}
