"""Core module — config, logging, errors, time."""

from vigil.core.clock import LoopScheduler, ManualScheduler, Scheduler, TimerHandle
from vigil.core.config import (
    MonitorConfig,
    NotifyActionConfig,
    NotifyConfigModel,
    Settings,
    get_settings,
    load_settings,
    parse_settings,
    reset_settings,
)
from vigil.core.durations import Rate, parse_duration, parse_rate, validate_cron
from vigil.core.exceptions import (
    ActionError,
    ConfigurationError,
    EvaluationError,
    PersistenceError,
    VigilError,
)
from vigil.core.logging import setup_logging

__all__ = [
    "ActionError",
    "ConfigurationError",
    "EvaluationError",
    "LoopScheduler",
    "ManualScheduler",
    "MonitorConfig",
    "NotifyActionConfig",
    "NotifyConfigModel",
    "PersistenceError",
    "Rate",
    "Scheduler",
    "Settings",
    "TimerHandle",
    "VigilError",
    "get_settings",
    "load_settings",
    "parse_duration",
    "parse_rate",
    "parse_settings",
    "reset_settings",
    "setup_logging",
    "validate_cron",
]
