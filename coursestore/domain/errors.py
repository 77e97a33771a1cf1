# coursestore/domain/errors.py


class StoreError(Exception):
    """
    Base class for errors surfaced to API callers.
    Each subclass carries an HTTP status and a classification string,
    the message is meant for humans.
    """

    status_code = 500
    error = "StoreError"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.error)
        self.message = message or self.error


class ValidationError(StoreError):
    status_code = 400
    error = "ValidationError"


class Unauthorized(StoreError):
    status_code = 401
    error = "Unauthorized"


class NotFound(StoreError):
    status_code = 404
    error = "NotFound"


class Conflict(StoreError):
    status_code = 409
    error = "Conflict"


class DuplicateItem(Conflict):
    error = "DuplicateItem"


class AlreadyOwned(Conflict):
    error = "AlreadyOwned"

    def __init__(self, message: str | None = None, access_info: dict | None = None):
        super().__init__(message)
        self.access_info = access_info


class ConcurrentModification(Conflict):
    error = "ConcurrentModification"


class InvalidTransition(Conflict):
    error = "InvalidTransition"


class ConfirmationInProgress(Conflict):
    error = "ConfirmationInProgress"


class EmptyCart(Conflict):
    status_code = 400
    error = "EmptyCart"


class UpstreamFailure(StoreError):
    status_code = 500
    error = "UpstreamFailure"


class SessionCreationFailed(UpstreamFailure):
    error = "SessionCreationFailed"


class PaymentNotCompleted(StoreError):
    status_code = 400
    error = "PaymentNotCompleted"


class MetadataMissing(StoreError):
    status_code = 400
    error = "MetadataMissing"
