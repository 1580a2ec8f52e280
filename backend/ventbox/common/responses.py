from rest_framework.response import Response

from ventbox.common.exceptions import error_body


def ok(data=None):
    return Response({"success": True, "data": data, "error": None})


def fail(code: str, message: str, http_status: int = 400):
    return Response(error_body(code, message), status=http_status)
