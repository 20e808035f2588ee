from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import BadRequest
from core.permissions import IsNurseRole
from core.serializers.applications import (
    ApplicationCreateSerializer, ApplicationListQuerySerializer, ApplicationStatusSerializer,
    ApplicationUpdateSerializer,
)
from core.services import applications as ledger
from core.throttles import BidWriteRateThrottle


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BidWriteRateThrottle])
def submit_application(request):
    s = ApplicationCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    app = ledger.submit_application(request.user, v['requestId'], v['price'], v['estimatedTime'])
    return Response({'ok': True, 'data': ledger.format_application(app)}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsNurseRole])
def my_applications(request):
    q = ApplicationListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response({'ok': True, 'data': ledger.list_for_nurse(request.user, status=q.validated_data.get('status'))})


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
@throttle_classes([BidWriteRateThrottle])
def application_detail(request, pk: int):
    if request.method == 'DELETE':
        ledger.withdraw_application(request.user, pk)
        return Response({'ok': True})
    s = ApplicationUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    app = ledger.update_application(
        request.user, pk, price=s.validated_data.get('price'), estimated_time=s.validated_data.get('estimatedTime'),
    )
    return Response({'ok': True, 'data': ledger.format_application(app)})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated])
def application_status(request, pk: int):
    s = ApplicationStatusSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except ValidationError:
        raise BadRequest('Application status must be "accepted" or "rejected".')
    app = ledger.change_application_status(request.user, pk, s.validated_data['status'])
    return Response({'ok': True, 'data': ledger.format_application(app)})
