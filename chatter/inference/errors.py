"""
Exception types for chatter.

Failures are split into run-fatal errors (the generation run is abandoned)
and recoverable per-step errors (the loop skips or retries a step).
"""

from typing import Any, Dict, Optional


class ChatterError(Exception):
    """Base exception for chatter errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, recoverable: bool = False):
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ModelError(ChatterError):
    """Raised by a sequence model when a forward pass or normalization fails."""
    pass


class TokenizerError(ChatterError):
    """Raised by a tokenizer when encoding or decoding fails."""
    pass


class PreconditionError(ChatterError):
    """Raised when a required collaborator is not available."""

    def __init__(self, collaborator: str):
        super().__init__(
            f"No {collaborator} available",
            details={"collaborator": collaborator},
        )
        self.collaborator = collaborator


class RunInProgressError(ChatterError):
    """Raised when a run is started while another one is still stepping."""
    pass
