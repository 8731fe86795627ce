"""Error kinds raised by the bliss adapters and coordinator.

Every error carries a machine readable ``code`` and a human readable
``message``; the HTTP layer maps ``status_code`` onto the response.
"""


class BlissError(Exception):
    code = 'BLISS_ERROR'
    status_code = 500

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ValidationFailure(BlissError):
    code = 'VALIDATION_FAILED'
    status_code = 422


class StorageFailure(BlissError):
    code = 'STORAGE_FAILED'
    status_code = 502


class MetadataFailure(BlissError):
    code = 'METADATA_FAILED'
    status_code = 502


class NotFound(BlissError):
    code = 'NOT_FOUND'
    status_code = 404


class NotificationFailure(BlissError):
    """Publish error. Never propagated out of a workflow."""
    code = 'NOTIFICATION_FAILED'
    status_code = 502


def require(**fields) -> None:
    """Raise ValidationFailure for the first missing or blank field."""
    for name, value in fields.items():
        if value is None or (isinstance(value, (str, bytes)) and not value):
            raise ValidationFailure(f'{name} is undefined')


class InvalidTransition(BlissError):
    code = 'INVALID_TRANSITION'
    status_code = 409
