"""
Care request endpoints.

Thin wrappers around :mod:`core.services.requests`: validate the payload,
call the engine and render the ``ok`` envelope.  Lifecycle errors raised by
the engine propagate to the project exception handler unchanged.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import BadRequest
from core.serializers.requests import (
    RequestCreateSerializer, RequestListQuerySerializer, RequestStatusSerializer, RequestUpdateSerializer,
)
from core.services import applications as ledger
from core.services import requests as engine


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def requests_collection(request):
    if request.method == 'POST':
        s = RequestCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        req = engine.create_request(request.user, **s.to_model_fields())
        return Response({'ok': True, 'data': engine.format_request(engine.load_request(req.pk))},
                        status=status.HTTP_201_CREATED)

    q = RequestListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    page = q.validated_data.get('page', 1)
    page_size = q.validated_data.get('pageSize', 20)
    data, total = engine.list_requests(
        request.user, status=q.validated_data.get('status'), page=page, page_size=page_size,
    )
    return Response({'ok': True, 'data': data, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def request_detail(request, pk: int):
    if request.method == 'PUT':
        s = RequestUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        req = engine.update_request(request.user, pk, **s.to_model_fields())
    else:
        req = engine.get_request(request.user, pk)
    return Response({'ok': True, 'data': engine.format_request(req)})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def request_status(request, pk: int):
    """Move a request along its lifecycle: ``{"status": ..., "cancellationReason": ...}``."""
    s = RequestStatusSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except ValidationError as e:
        if 'status' in e.detail:
            raise BadRequest('A valid "status" is required.')
        raise
    req = engine.change_status(
        request.user, pk, s.validated_data['status'], s.validated_data.get('cancellationReason'),
    )
    return Response({'ok': True, 'data': engine.format_request(req)})


def _confirm(request, pk: int, side: str):
    req, completed = engine.confirm_complete(request.user, pk, side)
    return Response({'ok': True, 'completed': completed, 'data': engine.format_request(req)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_as_provider(request, pk: int):
    return _confirm(request, pk, 'provider')


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_as_patient(request, pk: int):
    return _confirm(request, pk, 'patient')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def request_applications(request, pk: int):
    return Response({'ok': True, 'data': ledger.list_for_request(request.user, pk)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def request_history(request, pk: int):
    return Response({'ok': True, 'data': engine.request_history(request.user, pk)})
