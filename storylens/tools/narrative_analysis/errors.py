"""Error taxonomy for the narrative analysis pipeline."""

from storylens.libs.model_gateway import (
    GatewayError,
    GatewayErrorKind,
    PermanentGatewayError,
    TransientGatewayError,
)


class ConfigError(ValueError):
    """Pipeline configuration is invalid. Raised once, at construction time."""


class EvidenceValidationError(ValueError):
    """A single scored unit failed validation (quote not in text, score out of range, missing field).

    Always handled where it is raised by substituting a placeholder.
    """

    def __init__(self, category_id: str, reason: str):
        super().__init__(f"{category_id}: {reason}")
        self.category_id = category_id
        self.reason = reason


class DeadlineExceeded(Exception):
    """The run deadline passed before every stage finished.

    ``partial`` carries whatever the interrupted stage had already produced.
    """

    def __init__(self, message: str, partial=None):
        super().__init__(message)
        self.partial = partial


class IntegrityError(RuntimeError):
    """The assembled report is missing structurally required fields."""


__all__ = [
    'ConfigError',
    'DeadlineExceeded',
    'EvidenceValidationError',
    'GatewayError',
    'GatewayErrorKind',
    'IntegrityError',
    'PermanentGatewayError',
    'TransientGatewayError',
]
