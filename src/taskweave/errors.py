"""Typed errors and the uniform result envelope returned at the command boundary."""

from __future__ import annotations

from typing import Any, Callable

from taskweave import log


class TaskweaveError(Exception):
    """Base class for every failure the core reports to its callers."""

    code = "TASKWEAVE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationError(TaskweaveError):
    """Bad tag name, missing required field, malformed id."""

    code = "VALIDATION_ERROR"


class ReservedNameError(ValidationError):
    code = "RESERVED_TAG_NAME"


class NotFoundError(TaskweaveError):
    """Tag, task or subtask absent."""

    code = "NOT_FOUND"


class CircularDependencyError(TaskweaveError):
    code = "CIRCULAR_DEPENDENCY"


class ParseError(TaskweaveError):
    """The primary tasks document cannot be read as a tagged document."""

    code = "PARSE_ERROR"


class ConfirmationRequiredError(TaskweaveError):
    code = "CONFIRMATION_REQUIRED"


class CancelledError(TaskweaveError):
    code = "CANCELLED"


UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def fail(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


def run_command(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> dict[str, Any]:
    """Invoke *fn* and translate its outcome into a result envelope.

    This is the single place where errors are caught: typed errors keep their
    code, anything else is reported as ``UNEXPECTED_ERROR``.
    """
    try:
        return ok(fn(*args, **kwargs))
    except TaskweaveError as exc:
        log.error(exc.message)
        return fail(exc.code, exc.message)
    except Exception as exc:  # noqa: BLE001 - command boundary
        log.error(f"Unexpected failure in {getattr(fn, '__name__', fn)}: {exc}")
        return fail(UNEXPECTED_ERROR, str(exc) or exc.__class__.__name__)
