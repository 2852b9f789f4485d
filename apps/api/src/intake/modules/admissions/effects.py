"""
Best-effort side effects.

A state transition is one mandatory write followed by an ordered list of
effects (notifications, document cleanup) that may each fail independently.
A failed effect is logged and reported back, never raised, and never undoes
the transition or stops the effects after it.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffect:
    """A named best-effort action run after a committed state change."""

    name: str
    action: Callable[[], Awaitable[object]]


async def run_side_effects(effects: Sequence[SideEffect], context: str = "") -> list[str]:
    """
    Run effects in order, logging and collecting the names of those that fail.

    Returns:
        Names of failed effects, in the order they ran
    """
    failed: list[str] = []
    for effect in effects:
        try:
            await effect.action()
        except Exception as e:
            failed.append(effect.name)
            logger.error(
                f"Side effect '{effect.name}' failed{f' for {context}' if context else ''}: {e}",
                exc_info=True,
            )
    return failed


__all__ = ["SideEffect", "run_side_effects"]
