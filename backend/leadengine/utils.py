"""Small shared helpers."""

import asyncio
from datetime import datetime, timedelta


def run_async(coro):
    """Run an async coroutine from sync worker/engine context."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds from start to end."""
    return (end - start) // timedelta(milliseconds=1)
