"""
Notification Hook Base

Post-commit hooks receive the ProjectionResult of every applied event.
Implementations: Redis stream publisher, HTTP webhook, and a null hook.
A hook failure never affects the projection that triggered it.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable

from orderbook_indexer.contracts.types import ProjectionOutcome
from orderbook_indexer.handlers.projector import ProjectionResult

logger = logging.getLogger(__name__)


class NotificationHook(ABC):
    """Receives projection results after their transaction committed."""

    @abstractmethod
    def notify(self, result: ProjectionResult) -> None:
        """Deliver one result. May raise; callers go through safe_notify()."""

    def close(self) -> None:
        """Release any held connections."""


class NullNotificationHook(NotificationHook):
    """Discards everything."""

    def notify(self, result: ProjectionResult) -> None:
        return None


class CompositeNotificationHook(NotificationHook):
    """Fans a result out to several hooks, isolating their failures."""

    def __init__(self, hooks: Iterable[NotificationHook]):
        self.hooks = list(hooks)

    def notify(self, result: ProjectionResult) -> None:
        for hook in self.hooks:
            safe_notify(hook, result)

    def close(self) -> None:
        for hook in self.hooks:
            hook.close()


def safe_notify(hook: NotificationHook | None, result: ProjectionResult) -> bool:
    """
    Deliver an applied result to a hook, logging any failure.

    Returns:
        True if the hook accepted the result
    """
    if hook is None or result.outcome != ProjectionOutcome.APPLIED:
        return False
    try:
        hook.notify(result)
        return True
    except Exception as e:
        logger.error(
            f"Notification hook {type(hook).__name__} failed for {result.kind.value} {result.key}: {e}",
            extra={"kind": result.kind.value, "key": result.key},
            exc_info=True,
        )
        return False
