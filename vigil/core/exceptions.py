"""Exception hierarchy for the monitor engine."""

from __future__ import annotations


class VigilError(Exception):
    """Base exception for all engine errors."""


class ConfigurationError(VigilError):
    """A monitor or notify definition is invalid (raised at load time only)."""


class EvaluationError(VigilError):
    """A condition could not be evaluated for an occurrence."""


class ActionError(VigilError):
    """An action failed to launch or deliver."""


class PersistenceError(VigilError):
    """Reading or writing durable state failed."""
