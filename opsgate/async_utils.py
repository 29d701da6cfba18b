"""
Async utilities.
Locked file mutations block while they back off, so coroutines hand them to a
dedicated IO thread pool instead of running them on the event loop.
"""

import asyncio
import functools
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger("OpsGate.async_utils")

_DEFAULT_IO_WORKERS = 4
_MIN_WORKERS = 1
_MAX_IO_WORKERS = 8


def _parse_worker_count(key: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        logger.warning(f"Invalid worker count {key}={raw!r}; using {default}")
        return default
    if parsed < minimum or parsed > maximum:
        logger.warning(
            f"Out-of-range worker count {key}={parsed} "
            f"(allowed {minimum}..{maximum}); using {default}"
        )
        return default
    return parsed


_IO_WORKERS = _parse_worker_count(
    "OPSGATE_IO_EXECUTOR_WORKERS",
    _DEFAULT_IO_WORKERS,
    minimum=_MIN_WORKERS,
    maximum=_MAX_IO_WORKERS,
)

_IO_EXECUTOR = ThreadPoolExecutor(max_workers=_IO_WORKERS, thread_name_prefix="opsgate-io")


async def run_io_in_thread(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run a blocking call in the IO pool; its exceptions propagate to the caller."""
    loop = asyncio.get_running_loop()
    # A plain partial on a dedicated pool, not the loop's default executor.
    call = functools.partial(func, *args, **kwargs)
    return await loop.run_in_executor(_IO_EXECUTOR, call)
