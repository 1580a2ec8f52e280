from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework.response import Response
from rest_framework.views import exception_handler
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError

from ventbox.common import errors

_STATUS_BY_ERROR = (
    (errors.ValidationError, status.HTTP_400_BAD_REQUEST),
    (errors.AuthenticationRequired, status.HTTP_401_UNAUTHORIZED),
    (errors.ConflictError, status.HTTP_409_CONFLICT),
    (errors.MatchTimeoutError, status.HTTP_408_REQUEST_TIMEOUT),
    (errors.TransportError, status.HTTP_502_BAD_GATEWAY),
    (errors.StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def error_body(code: str, message: str) -> dict:
    return {"success": False, "data": None, "error": {"code": code, "message": message}}


def _ventbox_response(exc: errors.VentboxError) -> Response:
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    for klass, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, klass):
            http_status = mapped
            break
    return Response(error_body(exc.code, exc.message), status=http_status)


def custom_exception_handler(exc, context):
    # 코어 에러는 DRF 가 모르는 타입이라 먼저 처리
    if isinstance(exc, errors.VentboxError):
        return _ventbox_response(exc)

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(exc, NotAuthenticated):
        response.data = error_body("UNAUTHORIZED", "Authorization header missing")
    elif isinstance(exc, PermissionDenied):
        response.data = error_body("FORBIDDEN", "Permission denied")
    elif isinstance(exc, (InvalidToken, TokenError)):
        response.data = error_body("INVALID_TOKEN", "Invalid token")

    return response
