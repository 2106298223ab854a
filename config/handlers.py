"""
Custom error handlers for the API.
"""

import logging

from django.http import JsonResponse
from rest_framework.views import exception_handler

from store.exceptions import StoreError

logger = logging.getLogger(__name__)

STATUS_CODES = {403: "permission_denied", 404: "not_found"}


def api_exception_handler(exc, context):
    """
    Render every API error as {"error": <code>, "message": <detail>}.

    Field validation errors keep their per-field detail under "fields".
    """
    response = exception_handler(exc, context)
    if response is None:
        # Unhandled: Django turns it into a 500 and logs the traceback.
        return None

    view = context.get("view")
    view_name = type(view).__name__ if view is not None else "-"
    detail = response.data

    if isinstance(exc, StoreError):
        logger.warning("%s rejected by %s: %s", exc.default_code, view_name, exc.detail)
        response.data = {"error": exc.default_code, "message": str(exc.detail)}
        return response

    codes = exc.get_codes() if hasattr(exc, "get_codes") else STATUS_CODES.get(
        response.status_code, "error"
    )
    if isinstance(detail, dict) and "detail" not in detail:
        response.data = {
            "error": "invalid_input",
            "message": "Invalid input.",
            "fields": detail,
        }
    elif isinstance(detail, list):
        response.data = {
            "error": "invalid_input",
            "message": " ".join(str(item) for item in detail),
        }
    else:
        message = detail.get("detail", "") if isinstance(detail, dict) else detail
        if isinstance(codes, dict):
            codes = codes.get("detail", "error")
        response.data = {"error": str(codes), "message": str(message)}
    return response


def handler404(request, exception=None):
    """
    Custom 404 handler that returns JSON for API requests.
    """
    return JsonResponse(
        {
            "error": "not_found",
            "message": "The requested resource was not found.",
            "path": request.path,
        },
        status=404,
    )


def handler500(request):
    """
    Custom 500 handler that returns JSON for API requests.
    """
    return JsonResponse(
        {
            "error": "internal",
            "message": "An unexpected error occurred. Please try again later.",
        },
        status=500,
    )
