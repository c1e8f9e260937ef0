"""
Exception hierarchy for stackman.

Every error that reaches a cli entry point is a :class:`StackmanError`
with a message that names the offending resource.
"""

from typing import Any, Optional


class StackmanError(Exception):
    """Base class of all stackman errors."""


class PreconditionError(StackmanError):
    """
    Bad input detected before any network call is made (missing endpoint,
    invalid flag combination, unsupported disk bus, ...).
    """


class ApiError(StackmanError):
    """
    A REST call returned an unexpected status or could not be sent.

    Args:
        message: human readable description
        method: the http verb
        url: the request url
        status_code: the http status, None when the request was never answered
        detail: the cleaned error message returned by the backend
    """
    def __init__(self,
                 message: str,
                 method: Optional[str] = None,
                 url: Optional[str] = None,
                 status_code: Optional[int] = None,
                 detail: str = ''):
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.detail = detail


class AttachmentError(StackmanError):
    """
    A network interface could not be attached to a server.
    """
    def __init__(self, message: str, network: str, vm_id: str):
        super().__init__(message)
        self.network = network
        self.vm_id = vm_id


class TransientBackendError(AttachmentError):
    """
    The local fallback was already spent (fixed ip attach, then attach
    without a fixed ip) and the backend still refused.
    """


class ResourceErrorState(StackmanError):
    """
    A polled resource reported an explicit error status.
    """
    def __init__(self, message: str, resource: Any = None):
        super().__init__(message)
        self.resource = resource


class ResourceTimeoutError(StackmanError, TimeoutError):
    """
    A polled resource did not reach a terminal state in time.

    The last observed snapshot is kept in ``resource`` for diagnostics.
    """
    def __init__(self, message: str, resource: Any = None):
        super().__init__(message)
        self.resource = resource


class UploadError(StackmanError):
    """
    Streaming a payload to the storage endpoint failed.
    """
    def __init__(self,
                 message: str,
                 status_code: Optional[int] = None,
                 body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptySourceError(UploadError):
    """The upload source has a size of zero bytes."""


class CleanupError(StackmanError):
    """
    A compensating cleanup step (temporary image deletion) failed.

    ``primary_error`` is the error that aborted the job, if any.
    """
    def __init__(self, message: str, primary_error: Optional[BaseException] = None):
        super().__init__(message)
        self.primary_error = primary_error


class TokenError(StackmanError):
    """Base class of token cache errors."""


class TokenNotFoundError(TokenError):
    """No token is cached for the host."""


class TokenExpiredError(TokenError):
    """The cached token for the host is past its expiry."""
