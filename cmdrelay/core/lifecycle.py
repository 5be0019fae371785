# cmdrelay/core/lifecycle.py
"""Start/stop ordering for the relay process.

The FastAPI lifespan registers the scheduler first and the relay service
second. Startup walks that list forward; shutdown walks the components that
actually started backwards, so the relay queue removes its jobs and flushes
the command channel while the scheduler is still alive.

Example:
    >>> lm = get_lifecycle_manager()
    >>> lm.register("scheduler", SchedulerManager.get_instance())
    >>> lm.register("relay", get_relay_service())
    >>> await lm.startup()
    >>> await lm.shutdown()
"""

import inspect
import logging
from typing import Any

logger = logging.getLogger(__name__)


async def _invoke(component: Any, *method_names: str) -> bool:
    """Call the first method the component has; await it if needed."""
    for method_name in method_names:
        method = getattr(component, method_name, None)
        if method is None:
            continue
        result = method()
        if inspect.isawaitable(result):
            await result
        return True
    return False


class LifecycleManager:
    """Ordered startup and reverse shutdown of named components.

    A component provides ``start()`` or ``startup()`` and ``shutdown()``;
    either may be a coroutine function.
    """

    def __init__(self) -> None:
        self._components: dict[str, Any] = {}
        self._running: list[str] = []

    def register(self, name: str, component: Any) -> None:
        if name in self._components:
            logger.warning("Lifecycle component %s registered twice, replacing", name)
        self._components[name] = component
        logger.debug("Registered lifecycle component: %s", name)

    async def startup(self) -> None:
        """Start every registered component.

        If one fails, the components already started are shut down again
        and the error is re-raised.
        """
        if self._running:
            logger.debug("Lifecycle manager already started")
            return

        for name, component in self._components.items():
            logger.info("Starting %s", name)
            try:
                await _invoke(component, "start", "startup")
            except Exception:
                logger.exception("Failed to start %s", name)
                await self.shutdown()
                raise
            self._running.append(name)

        logger.info("Started %d lifecycle components", len(self._running))

    async def shutdown(self) -> None:
        """Shut down started components, newest first.

        A failing component is logged and the rest still shut down.
        """
        while self._running:
            name = self._running.pop()
            logger.info("Stopping %s", name)
            try:
                await _invoke(self._components[name], "shutdown")
            except Exception as e:
                logger.error("Error shutting down %s: %s", name, e)

    @property
    def is_started(self) -> bool:
        return bool(self._running)

    @property
    def component_count(self) -> int:
        return len(self._components)


_lifecycle_manager: LifecycleManager | None = None


def get_lifecycle_manager() -> LifecycleManager:
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = LifecycleManager()
    return _lifecycle_manager


def reset_lifecycle_manager() -> None:
    """Drop the global manager (for testing)."""
    global _lifecycle_manager
    _lifecycle_manager = None
