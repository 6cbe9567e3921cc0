from __future__ import annotations


class LifecycleError(ValueError):
    """Base class for case lifecycle failures surfaced to callers.

    Subclasses ``ValueError`` so form handlers that already report
    ``ValueError`` messages keep working unchanged.
    """

    status_code = 400
    retryable = False


class ValidationError(LifecycleError):
    status_code = 400


class PermissionDenied(LifecycleError):
    status_code = 403


class NotFoundError(LifecycleError):
    status_code = 404


class ConflictError(LifecycleError):
    status_code = 409


class StorageError(LifecycleError):
    # Transaction or connection failure; the caller may retry with backoff.
    status_code = 503
    retryable = True
