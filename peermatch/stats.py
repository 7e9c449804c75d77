"""Periodic connection statistics polling."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable
from typing import Protocol

from peermatch.session import Session
from peermatch.session import SessionState
from peermatch.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


class SessionSource(Protocol):
    """Anything that can list the current sessions."""

    def sessions(self) -> Iterable[Session]:
        """Get the current sessions."""
        ...


async def poll_stats(source: SessionSource) -> int:
    """Sample the transport statistics of every open session once.

    Samples are delivered to each session's inbox. A session whose
    transport fails to report stats is skipped. The session records
    the sample when it handles it.

    Returns:
        Number of sessions sampled.
    """
    count = 0
    for session in list(source.sessions()):
        if session.state is not SessionState.OPEN:
            continue
        try:
            stats = await session.transport.get_stats()
        except Exception as e:
            logger.warning(
                f'Failed to sample connection stats of {session.peer_id}: '
                f'{e!r}',
            )
            continue
        session.deliver_stats(stats)
        count += 1
    return count


def periodic_stats_poller(
    source: SessionSource,
    interval: float = 3,
) -> asyncio.Task[None]:
    """Create an asyncio task which periodically samples session stats.

    Cancel the returned task to stop polling.

    Args:
        source: Provider of sessions to poll, typically a
            [`SessionRegistry`][peermatch.registry.SessionRegistry].
        interval: Seconds between polls.

    Returns:
        Asyncio task.
    """

    async def _poll() -> None:
        while True:
            await asyncio.sleep(interval)
            count = await poll_stats(source)
            logger.debug(f'Polled connection stats of {count} sessions')

    task = spawn_guarded_background_task(_poll)
    task.set_name('session-stats-poller')

    return task
