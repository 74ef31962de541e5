"""Tenant scoping helpers.

WHAT:
    Every tenant-owned query goes through `scoped()`, which adds the
    `tenant_id` filter. Lookups by id use `get_scoped()`.

WHY:
    Tenant isolation is enforced by the application rather than by database
    row-level security. A record belonging to another tenant is treated the
    same as a missing record: callers get None (and routes answer 404).

REFERENCES:
    - devcrm/deps.py: get_tenant_id dependency
    - devcrm/services/*.py: all queries use these helpers
"""

from typing import Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy.orm import Query, Session

from .exceptions import InvalidInputError

ModelT = TypeVar("ModelT")


def scoped(db: Session, model: Type[ModelT], tenant_id: UUID) -> Query:
    """Return a query over `model` restricted to one tenant."""
    return db.query(model).filter(model.tenant_id == tenant_id)


def get_scoped(db: Session, model: Type[ModelT], tenant_id: UUID, record_id: UUID) -> Optional[ModelT]:
    """Fetch a record by primary key inside the tenant, or None."""
    return scoped(db, model, tenant_id).filter(model.id == record_id).first()


def parse_uuid(value, label: str) -> UUID:
    """Parse a path/body identifier, raising a 400-mapped error when malformed.

    >>> parse_uuid("not-a-uuid", "campaign")
    Traceback (most recent call last):
    ...
    devcrm.exceptions.InvalidInputError: Invalid campaign ID format
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise InvalidInputError(f"Invalid {label} ID format")


LIKE_ESCAPE = "\\"


def contains_pattern(search: str) -> str:
    """Lower-cased `%term%` LIKE pattern with the term's wildcards escaped.

    Use with `.like(pattern, escape=LIKE_ESCAPE)`.

    >>> contains_pattern(" 50%_Off ")
    '%50\\\\%\\\\_off%'
    """
    term = search.strip().lower()
    for char in (LIKE_ESCAPE, "%", "_"):
        term = term.replace(char, LIKE_ESCAPE + char)
    return f"%{term}%"
