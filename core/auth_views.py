"""
Authentication views.

Registration, username/password login, JWT refresh/logout and the current
identity.  Login issues both a DRF token and a JWT pair; either is
accepted by the API (see ``REST_FRAMEWORK`` in settings).
"""
from __future__ import annotations

from django.contrib.auth import authenticate
from loguru import logger
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView

from core.serializers.auth import LoginSerializer, RegisterSerializer
from core.serializers.users import ProfileUpdateSerializer
from core.services.audit import log_action
from core.throttles import LoginRateThrottle, RegisterRateThrottle

from .models import User


def user_summary(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'name': user.get_full_name() or user.username,
        'role': user.role,
        'verificationStatus': user.verification_status,
        'phone': user.phone,
    }


def _issue_tokens(user: User) -> dict:
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    return {
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
    }


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([RegisterRateThrottle])
def register_view(request):
    """Self-registration for patients and nurses.

    Patients are usable straight away; nurses start ``pending`` and must be
    verified by an administrator before they can bid.
    """
    s = RegisterSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    first, _, last = v['name'].partition(' ')
    user = User(
        username=v['username'],
        first_name=first[:150],
        last_name=last[:150],
        role=v['role'],
        phone=v.get('phone', ''),
        verification_status=(
            User.VERIFICATION_VERIFIED if v['role'] == User.ROLE_PATIENT else User.VERIFICATION_PENDING
        ),
    )
    user.set_password(v['password'])
    user.save()
    logger.info("Registered {} as {}", user.username, user.role)
    log_action(user=user, action='register', object_type='user', object_id=user.id,
               detail={'role': user.role, 'ip': request.META.get('REMOTE_ADDR')})
    return Response({'ok': True, **_issue_tokens(user), 'user': user_summary(user)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']

    user = authenticate(request, username=username, password=s.validated_data['password'])
    if not user:
        # only the username is recorded for failed attempts
        log_action(user=None, action='login', object_type='user', object_id=None,
                   detail={'result': 'fail', 'username': username, 'ip': request.META.get('REMOTE_ADDR')})
        return Response({'ok': False, 'error': {'code': 'bad_credentials', 'message': 'Invalid username or password.'}},
                        status=400)

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': request.META.get('REMOTE_ADDR')})
    return Response({'ok': True, **_issue_tokens(user), 'role': user.role, 'user': user_summary(user)})


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def me_view(request):
    """Current identity; ``PUT`` edits the display name and phone."""
    user = request.user
    if request.method == 'PUT':
        s = ProfileUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        fields = []
        if 'name' in s.validated_data:
            first, _, last = s.validated_data['name'].partition(' ')
            user.first_name, user.last_name = first[:150], last[:150]
            fields += ['first_name', 'last_name']
        if 'phone' in s.validated_data:
            user.phone = s.validated_data['phone']
            fields.append('phone')
        if fields:
            user.save(update_fields=fields)
            log_action(user=user, action='profile.update', object_type='user', object_id=user.id,
                       detail={'fields': fields})
    return Response({'ok': True, 'user': user_summary(user)})


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from refresh token."""
    resp = TokenRefreshView.as_view()(request._request)
    data = dict(resp.data)
    if 'access' in data and 'jwt_access' not in data:
        data['jwt_access'] = data.pop('access')
    return Response(data, status=resp.status_code)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or every outstanding one for the user."""
    refresh = request.data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
            count = 1
        except TokenError as e:
            return Response({'ok': False, 'error': {'code': 'bad_request', 'message': str(e)}}, status=400)
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    # the legacy DRF token goes too
    Token.objects.filter(user=request.user).delete()
    return Response({'ok': True, 'blacklisted': count})
