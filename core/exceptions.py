"""
Error taxonomy for the marketplace API and the unified exception handler.

Every lifecycle failure is an ``APIException`` so services can raise it and
views let it propagate; :func:`api_exception_handler` renders them all in
the ``{'ok': False, 'error': {...}}`` envelope.  ``Forbidden`` (who you are)
and ``InvalidTransition`` (where the request is) use different status codes
and error codes because clients show different guidance for each.
"""
from django.http import Http404
from loguru import logger
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class NotFound(exceptions.NotFound):
    default_detail = 'Not found.'
    default_code = 'not_found'


class Forbidden(exceptions.PermissionDenied):
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'forbidden'


class NotVerified(exceptions.PermissionDenied):
    default_detail = 'Only verified nurses can do this.'
    default_code = 'not_verified'


class BadRequest(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Malformed request.'
    default_code = 'bad_request'


class InvalidTransition(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This action is not allowed in the current state.'
    default_code = 'invalid_transition'

    def __init__(self, current, target, detail=None):
        self.current = current
        self.target = target
        if detail is None:
            detail = f'Cannot {target} a request that is {current}.'
        super().__init__(detail)


class DuplicateApplication(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'You already have a pending application for this request.'
    default_code = 'duplicate_application'


class RequestNotOpen(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This request is not accepting applications.'
    default_code = 'request_not_open'


# DRF codes folded into the marketplace vocabulary
_CODE_ALIASES = {
    'permission_denied': 'forbidden',
    'invalid': 'bad_request',
    'parse_error': 'bad_request',
}


def _error_code(exc) -> str:
    if isinstance(exc, Http404):
        return 'not_found'
    if isinstance(exc, exceptions.ValidationError):
        return 'bad_request'
    code = getattr(exc, 'default_code', None) or 'api_error'
    return _CODE_ALIASES.get(code, code)


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view')
        logger.exception("Unhandled error in {}", type(view).__name__ if view else 'view')
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    error = {'code': _error_code(exc), 'message': detail}
    if isinstance(exc, InvalidTransition):
        error['current'] = exc.current
        error['target'] = exc.target
    return Response({'ok': False, 'error': error}, status=resp.status_code, headers=_passthrough_headers(resp))


def _passthrough_headers(resp) -> dict:
    return {k: v for k, v in resp.items() if k in ('WWW-Authenticate', 'Retry-After')}
