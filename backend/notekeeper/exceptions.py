"""
NoteKeeper Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for every error the API and the worker
       distinguish.
How:   Each exception carries a message and an optional context dict. Global
       handlers registered in main.py turn them into JSON responses with the
       matching HTTP status code.
Who:   Raised by services and store adapters; caught by global handlers, or by
       the archive worker, which records failures instead of raising.

Exception Hierarchy:
    NoteKeeperError (base)
    ├── ValidationError          → 400 Bad Request
    ├── LimitExceededError       → 403 Forbidden (note / attachment quota)
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict
    ├── TransientStoreError      → 500 Internal Server Error (message surfaced)
    │   ├── DatabaseError
    │   ├── BlobStorageError
    │   ├── QueueError
    │   └── StatusStoreError
    │       ├── StatusRecordExistsError
    │       └── StatusTransitionError  (worker-internal)
    └── ArchiveBuildError        (worker-internal, recorded as Failed)
"""

from typing import Any, Dict, Optional


class NoteKeeperError(Exception):
    """
    Base exception for all NoteKeeper application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NoteKeeperError):
    """
    Raised when client input fails a business rule.

    Schema-level problems (missing fields, wrong lengths) are rejected by
    FastAPI with 422 before reaching the services; this covers the rest, e.g.
    an attachment id containing a path separator.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class LimitExceededError(NoteKeeperError):
    """Raised when creating a note or attachment would exceed the configured maximum."""

    def __init__(
        self,
        title: str,
        limit_name: str,
        limit: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"{title}: {limit_name} [{limit}]"
        ctx = context or {}
        ctx[limit_name] = limit
        super().__init__(message=message, context=ctx)
        self.title = title
        self.limit = limit


class NotFoundError(NoteKeeperError):
    """
    Raised when a requested resource does not exist.

    Covers missing notes, attachments, archive namespaces, archives and status
    records. Services convert "absent" results into this exception so routes
    never need to check for None.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"The {resource} {resource_id} does not exist."
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(NoteKeeperError):
    """
    Raised when an operation collides with work in progress.

    Example: deleting a note while one of its archive jobs is InProgress.
    """

    def __init__(
        self,
        message: str = "The request conflicts with the current state of the resource",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TransientStoreError(NoteKeeperError):
    """
    Raised when an I/O call against one of the backing stores fails.

    The stores are the relational database, the blob store, the queue and the
    status table. Nothing in this package retries the failed call; the request
    fails with 500 and the top-level message is returned to the client.
    """

    store = "store"

    def __init__(
        self,
        message: str = "A storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.setdefault("store", self.store)
        super().__init__(message=message, context=ctx)


class DatabaseError(TransientStoreError):
    """A query, insert, update or delete against the note database failed."""

    store = "database"


class BlobStorageError(TransientStoreError):
    """Could not read, write, list or delete an object or namespace."""

    store = "blob"


class QueueError(TransientStoreError):
    """Could not create the queue, publish, receive or delete a message."""

    store = "queue"


class StatusStoreError(TransientStoreError):
    """Could not create, read, write or delete archive job status records."""

    store = "status"


class StatusRecordExistsError(StatusStoreError):
    """
    Raised by an insert-only create when the (owner, job) record already
    exists. A transition that loses an insert race catches this and re-reads.
    """


class StatusTransitionError(StatusStoreError):
    """
    Raised when a status write would move a record backwards.

    The status store refuses e.g. Completed → InProgress. Only the worker
    writes transitions, and it treats this as "another delivery already
    finished the job".
    """

    def __init__(
        self,
        owner_id: str,
        job_id: str,
        current: str,
        requested: str,
    ):
        super().__init__(
            message=(
                f"Status of job {job_id} for note {owner_id} cannot move "
                f"from {current} to {requested}"
            ),
            context={"owner_id": owner_id, "job_id": job_id,
                     "current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class ArchiveBuildError(NoteKeeperError):
    """
    Raised by the archive builder on any fault partway through a build.

    Never reaches an HTTP client: the worker catches it and writes a Failed
    status record.
    """

    def __init__(
        self,
        message: str = "Archive build failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
