"""Domain exceptions raised by services and translated by the blueprints."""


class SmartliasError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str, *, fields: dict | None = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or {}


class ValidationError(SmartliasError):
    status_code = 422


class NotFound(SmartliasError):
    status_code = 404


class InvalidTransition(SmartliasError):
    status_code = 409


class StorageError(SmartliasError):
    """The JSON mock files could not be read or written."""

    status_code = 500
