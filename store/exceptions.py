"""
Domain errors raised by the order and stock engine.

They are DRF exceptions so the API layer renders them without translation;
raising one inside a unit of work rolls the whole transaction back.
"""

from rest_framework import status
from rest_framework.exceptions import APIException


class StoreError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request could not be processed."
    default_code = "store_error"


class InvalidInput(StoreError):
    default_detail = "Invalid input."
    default_code = "invalid_input"


class NotFound(StoreError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class Forbidden(StoreError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to modify this resource."
    default_code = "forbidden"


class Conflict(StoreError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The current state does not allow this operation."
    default_code = "conflict"


class InsufficientStock(Conflict):
    default_detail = "Insufficient stock."
    default_code = "insufficient_stock"


class InvalidState(Conflict):
    default_detail = "The order is not in a state that allows this operation."
    default_code = "invalid_state"


class DuplicateBarcode(Conflict):
    default_detail = "This barcode is already in use."
    default_code = "duplicate_barcode"


class LockContention(StoreError):
    """Row locks were not granted in time. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "The store is busy, please retry."
    default_code = "lock_contention"
