"""Exceptions raised at the inscriber's boundaries and their API rendering."""

from pydantic import BaseModel, Field


class InscribeError(Exception):
    """Base error for the inscriber.

    ``retryable`` marks failures that may succeed if the same request is sent
    again unchanged (a flaky node, a full disk), as opposed to requests that
    need different input or a different pipeline state.
    """

    retryable = False

    def __init__(self, message: str, component: str = "", details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.component = component
        self.details = details or {}


class ValidationError(InscribeError):
    """Bad options, unknown pipeline or batch ids, out-of-range step indices."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="validation", details=details)


class TransportError(InscribeError):
    """The remote node could not be reached or answered with an unusable payload."""

    retryable = True

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="transport", details=details)


class ExecutionError(InscribeError):
    """A step or pipeline was asked to move to a state it cannot reach from here."""

    def __init__(self, message: str, component: str = "execution", details: dict | None = None):
        super().__init__(message, component=component, details=details)


class ResourceError(InscribeError):
    """Upload storage failures."""

    retryable = True

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, component="resource", details=details)


class ErrorResponse(BaseModel):
    """JSON body returned for every InscribeError."""

    error_type: str = Field(..., description="Exception class name")
    component: str = Field(default="")
    message: str
    details: dict = Field(default_factory=dict)
    actionable_guidance: str = Field(default="", description="What the user can do next")
    retry_possible: bool = False

    @classmethod
    def from_exception(cls, exc: InscribeError, guidance: str = "") -> "ErrorResponse":
        return cls(
            error_type=type(exc).__name__,
            component=exc.component,
            message=exc.message,
            details=exc.details,
            actionable_guidance=guidance,
            retry_possible=exc.retryable,
        )
