"""
Domain Exceptions
=================

Exception types raised by the service layer.

WHY THIS FILE EXISTS
--------------------
Services are plain functions that know nothing about HTTP. They signal
business failures (missing record, uniqueness conflict, invalid input) with
these exceptions, and `devcrm/errors.py` maps each one to a status code and
a `{"error": ...}` body.

RELATED FILES
-------------
- devcrm/services/*.py: Raise these exceptions
- devcrm/errors.py: Exception handlers registered on the FastAPI app
"""

from typing import Any, List, Optional


class DevCrmError(Exception):
    """
    Base exception for all service-layer errors.

    USAGE:
        try:
            create_campaign(db, tenant_id, payload)
        except DevCrmError as e:
            return {"error": e.message}
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInputError(DevCrmError):
    """Input violates a business rule (date range, confidence bounds, ...).

    `details` carries field-level errors as `{"field": ..., "message": ...}` dicts.
    """

    status_code = 400


class ForbiddenError(DevCrmError):
    status_code = 403


class NotFoundError(DevCrmError):
    """Record does not exist in the caller's tenant.

    Records owned by another tenant raise this too, so their existence is
    never revealed.
    """

    status_code = 404


class ConflictError(DevCrmError):
    """Uniqueness or ownership conflict (duplicate dedup key, identifier claim, name)."""

    status_code = 409
