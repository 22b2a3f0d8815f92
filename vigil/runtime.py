"""Wires settings into a running engine: state, notifications, monitors, sources.

Usage::

    settings = load_settings("config/vigil.yaml")
    setup_logging()
    runtime = create_runtime(settings)
    async with runtime:
        ...  # event sources call runtime.engine.submit_occurrence()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import TracebackType

import structlog

from vigil.core.clock import LoopScheduler, Scheduler
from vigil.core.config import Settings
from vigil.engine.actions import ActionDispatcher, AsyncioSpawner, Spawner
from vigil.engine.builder import build_monitors
from vigil.engine.conditions import ConditionPipeline
from vigil.engine.engine import MonitorEngine
from vigil.engine.templating import SimpleTemplates
from vigil.engine.variables import GlobalVariables
from vigil.notify.aggregator import NotificationAggregator
from vigil.notify.delivery import Deliverer
from vigil.notify.factory import build_notify_configs, create_notify_stack
from vigil.sources.base import BaseSource
from vigil.sources.timer import interval_sources
from vigil.state import open_state
from vigil.state.saver import StateSaver

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Everything needed to run the monitors of one configuration."""

    engine: MonitorEngine
    aggregator: NotificationAggregator
    deliverer: Deliverer
    spawner: Spawner
    scheduler: Scheduler
    saver: StateSaver
    sources: list[BaseSource] = field(default_factory=list)

    async def start(self) -> None:
        await self.engine.start()
        await self.aggregator.start()
        await self.saver.start()
        for source in self.sources:
            source.on_occurrence(self.engine.submit_occurrence)
            await source.start()
        logger.info("runtime_started", monitors=len(self.engine.monitors), sources=len(self.sources))

    async def stop(self) -> None:
        for source in self.sources:
            await source.stop()
        await self.engine.stop()
        await self.aggregator.stop()
        await self.saver.stop()
        await self.spawner.close()
        await self.deliverer.close()
        if isinstance(self.scheduler, LoopScheduler):
            await self.scheduler.close()
        logger.info("runtime_stopped")

    async def __aenter__(self) -> Runtime:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()


def create_runtime(
    settings: Settings,
    scheduler: Scheduler | None = None,
    spawner: Spawner | None = None,
    deliverer: Deliverer | None = None,
) -> Runtime:
    """Compile *settings* and wire every component.

    Raises:
        ConfigurationError: Any monitor or notify config is invalid.
    """
    scheduler = scheduler or LoopScheduler()
    spawner = spawner or AsyncioSpawner()

    monitors = build_monitors(settings)
    state_dir = settings.state.directory if settings.state.persist else None
    unique_cache, windows, cooldowns = open_state(state_dir)
    cooldowns.prune(monitors)

    if deliverer is None:
        aggregator, deliverer = create_notify_stack(settings, scheduler, windows)
    else:
        aggregator = NotificationAggregator(
            configs=build_notify_configs(settings),
            deliverer=deliverer,
            scheduler=scheduler,
            windows=windows,
        )

    templates = SimpleTemplates()
    globals_ = GlobalVariables(settings.variables)
    pipeline = ConditionPipeline(unique_cache, windows, cooldowns, evaluator=templates)
    dispatcher = ActionDispatcher(
        aggregator=aggregator,
        spawner=spawner,
        cooldowns=cooldowns,
        globals_=globals_,
        renderer=templates,
    )
    engine = MonitorEngine(monitors.values(), pipeline, dispatcher, globals_=globals_)

    return Runtime(
        engine=engine,
        aggregator=aggregator,
        deliverer=deliverer,
        spawner=spawner,
        scheduler=scheduler,
        saver=StateSaver([windows, cooldowns], interval=settings.state.flush_interval),
        sources=list(interval_sources(monitors.values())),
    )
