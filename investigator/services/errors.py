"""
Error taxonomy shared by the services and mapped 1:1 onto HTTP responses.

A refusal is not a crash - it's the system working correctly. Every refusal
leaves state untouched.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for refusals raised by the services."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(PipelineError):
    """Malformed input. Rejected synchronously, no state change."""


class EmptyInput(ValidationError):
    pass


class UnsupportedFileKind(ValidationError):
    def __init__(self, message: str, file_names: Optional[list] = None):
        self.file_names = file_names or []
        super().__init__(message)


class ConfidenceOutOfRange(ValidationError):
    pass


class InvalidTransition(PipelineError):
    """Operation called on a Task in the wrong stage."""


class ParentNotCompleted(InvalidTransition):
    pass


class NotFound(PipelineError):
    pass


class EngineError(Exception):
    """
    Raised by an analysis engine.

    Never escapes analyze/execute: the pipeline absorbs it into the Failed
    stage and the audit trail.
    """


class Cancelled(EngineError):
    def __init__(self, message: str = "Cancelled by request"):
        super().__init__(message)


class AuditTrailFailure(RuntimeError):
    """The audit log could not be appended to. There is no degraded mode."""
