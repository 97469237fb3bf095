import logging

from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler


logger = logging.getLogger(__name__)


class Conflict(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request conflicts with the current state of the resource."
    default_code = "conflict"

    def __init__(self, detail=None, code=None, details=None):
        super().__init__(detail=detail, code=code)
        self.details = details


class InvalidTransition(Conflict):
    default_detail = "This status change is not allowed."
    default_code = "invalid_transition"


def _first_message(data):
    if isinstance(data, dict):
        if "detail" in data:
            return str(data["detail"])
        for value in data.values():
            return _first_message(value)
    if isinstance(data, list) and data:
        return _first_message(data[0])
    return str(data)


def build_error_body(exc, data):
    if isinstance(exc, exceptions.ValidationError):
        body = {"error": _first_message(data)}
        if isinstance(data, dict):
            body["details"] = data
        return body
    body = {"error": _first_message(data)}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception(
            "Unhandled error in %s",
            view.__class__.__name__ if view is not None else "unknown view",
        )
        return Response(
            {"error": "Internal server error."},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    response.data = build_error_body(exc, response.data)
    return response
