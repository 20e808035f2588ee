"""
Dashboard statistics endpoint.

Every role gets its own summary (see :mod:`core.services.stats`).  The
payload is cached per user for ``DASHBOARD_CACHE_SECONDS``.
"""
from __future__ import annotations

from django.conf import settings
from django.core.cache import cache
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.services.stats import stats_for


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dashboard_stats(request):
    user = request.user
    ck = f"dashboard:stats:u={user.id}:r={user.role}"
    cached = cache.get(ck)
    if cached:
        return Response(cached)
    payload = {'ok': True, 'role': user.role, 'data': stats_for(user)}
    cache.set(ck, payload, settings.DASHBOARD_CACHE_SECONDS)
    return Response(payload)
