"""
Test utilities and helper functions for SecureNow SOS testing.
"""
import asyncio
from typing import Callable, List

from src.models.alert import FanOutKind, NotificationChannelType, NotificationLogEntry


class AsyncTestHelper:
    """Helper class for async testing operations."""

    @staticmethod
    async def wait_for_condition(condition: Callable[[], bool], timeout: float = 2.0) -> bool:
        """Wait for a condition to become true."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while loop.time() - start_time < timeout:
            if condition():
                return True
            await asyncio.sleep(0.01)
        return condition()


def entries_for(log: List[NotificationLogEntry], kind: FanOutKind,
                channel: NotificationChannelType = None) -> List[NotificationLogEntry]:
    """Filter log entries by pass kind and optionally channel."""
    return [
        entry for entry in log
        if entry.pass_kind == kind and (channel is None or entry.channel == channel)
    ]
