"""
Error taxonomy for the records aggregation and reporting engine.

Every error carries a human readable message plus a context dict so the
HTTP layer can report which record/field/stage was involved.
"""


class RecordsError(Exception):
    """Base class for all records engine errors"""

    http_status = 500

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        return {
            'type': self.__class__.__name__,
            'message': self.message,
            'context': {k: str(v) for k, v in self.context.items()},
        }


class NotFound(RecordsError):
    http_status = 404


class PermissionDenied(RecordsError):
    """
    Raised when the caller may not touch a document.

    reason is 'wrong_owner' when the document belongs to somebody else and
    'insufficient_rights' when the backing store itself refused the call.
    """

    http_status = 403
    WRONG_OWNER = 'wrong_owner'
    INSUFFICIENT_RIGHTS = 'insufficient_rights'

    def __init__(self, message, reason=INSUFFICIENT_RIGHTS, **context):
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class Unavailable(RecordsError):
    """Transient failure, safe to retry"""
    http_status = 503


class FailedPrecondition(RecordsError):
    """Store rejected the request as issued (e.g. ordered query without index)"""
    http_status = 412


class PartialFailure(RecordsError):
    """Some child documents could not be processed; never fatal on its own"""

    def __init__(self, message, failures=None, **context):
        super().__init__(message, **context)
        self.failures = list(failures or [])


class RenderFailure(RecordsError):
    http_status = 502


class UploadFailure(RecordsError):
    http_status = 502


class AlreadyInFlight(RecordsError):
    """A duplicate request for an identifier that is already being processed"""
    http_status = 409


class DeletionNotConfirmed(RecordsError):
    """The record was still present when re-read after deletion"""
    http_status = 500


class OperationCancelled(RecordsError):
    """The subscription that started this work was cancelled; results are discarded"""
