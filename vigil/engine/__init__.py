"""Monitor engine — occurrences, condition pipeline, and actions."""

from vigil.engine.actions import ActionDispatcher, AsyncioSpawner, Spawner
from vigil.engine.builder import build_monitor, build_monitors
from vigil.engine.conditions import ConditionPipeline, PipelineResult, Verdict
from vigil.engine.engine import MonitorEngine
from vigil.engine.templating import ExpressionEvaluator, SimpleTemplates, TemplateRenderer
from vigil.engine.types import (
    Action,
    Condition,
    EventKind,
    EventSpec,
    Monitor,
    Occurrence,
)
from vigil.engine.variables import GlobalVariables, VariableStore

__all__ = [
    "Action",
    "ActionDispatcher",
    "AsyncioSpawner",
    "Condition",
    "ConditionPipeline",
    "EventKind",
    "EventSpec",
    "ExpressionEvaluator",
    "GlobalVariables",
    "Monitor",
    "MonitorEngine",
    "Occurrence",
    "PipelineResult",
    "SimpleTemplates",
    "Spawner",
    "TemplateRenderer",
    "VariableStore",
    "Verdict",
    "build_monitor",
    "build_monitors",
]
