class DeploymentError(Exception):
    """Base exception for deployment tracking failures."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DeploymentError):
    """Raised when input is malformed or references a missing/deleted row."""

    kind = "validation"


class ConflictError(DeploymentError):
    """Raised when equipment already has an open assignment."""

    kind = "conflict"


class NotFoundError(DeploymentError):
    """Raised when a return target does not exist or is already closed."""

    kind = "not_found"


class StoreError(DeploymentError):
    """Raised when the store cannot complete an operation."""

    kind = "store"
