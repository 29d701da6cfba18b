"""
Advisory File Lock.
Exclusive `<target>.lock` files with bounded exponential backoff and stale-lock
reclaim. One lock per guarded file; cooperating processes must all use it.
"""

import logging
import os
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from .errors import LockExhaustedError

logger = logging.getLogger("OpsGate.file_lock")

# Default retry configuration
DEFAULT_RETRIES = 8
DEFAULT_FACTOR = 2.0
DEFAULT_MIN_DELAY = 0.05  # seconds
DEFAULT_MAX_DELAY = 5.0  # seconds
DEFAULT_STALE_SEC = 30.0


def calculate_backoff(
    attempt: int,
    min_delay: float = DEFAULT_MIN_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    factor: float = DEFAULT_FACTOR,
    randomize: bool = True,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        min_delay: Delay of the first retry in seconds
        max_delay: Maximum delay cap
        factor: Exponential growth factor
        randomize: Multiply by a random factor in [1, 2)
        rng: Optional Random instance for deterministic testing

    Returns:
        Delay in seconds
    """
    delay = min_delay * (factor**attempt)
    if randomize:
        rng = rng or random
        delay *= 1.0 + rng.random()
    return max(0.0, min(delay, max_delay))


def lock_path_for(target: str) -> str:
    return f"{target}.lock"


@dataclass
class FileLock:
    """
    Exclusive lock on `target`, held through a sibling lock file created with
    O_CREAT | O_EXCL. A lock file whose mtime is older than `stale_sec` is
    treated as abandoned and removed.
    """

    target: str
    retries: int = DEFAULT_RETRIES
    min_delay: float = DEFAULT_MIN_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    factor: float = DEFAULT_FACTOR
    stale_sec: float = DEFAULT_STALE_SEC
    rng: Optional[random.Random] = None
    _token: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def lock_path(self) -> str:
        return lock_path_for(self.target)

    @property
    def acquired(self) -> bool:
        return self._token is not None

    def _try_create(self) -> bool:
        token = uuid.uuid4().hex
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False
        try:
            os.write(fd, f"pid={os.getpid()} ts={time.time():.3f} token={token}\n".encode())
        finally:
            os.close(fd)
        self._token = token
        return True

    def _reclaim_if_stale(self) -> bool:
        try:
            age = time.time() - os.path.getmtime(self.lock_path)
        except FileNotFoundError:
            # Released between our attempt and the stat; retry right away.
            return True
        if age < self.stale_sec:
            return False
        logger.warning(f"Reclaiming stale lock {self.lock_path} (age={age:.1f}s)")
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            pass
        return True

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.lock_path)), mode=0o700, exist_ok=True)
        attempt = 0
        while True:
            if self._try_create():
                return
            if self._reclaim_if_stale() and self._try_create():
                return
            if attempt >= self.retries:
                raise LockExhaustedError(
                    f"Could not acquire lock {self.lock_path} after {attempt} retries",
                    detail={"lock_path": self.lock_path, "retries": attempt},
                )
            delay = calculate_backoff(
                attempt, self.min_delay, self.max_delay, self.factor, rng=self.rng
            )
            logger.debug(
                f"Lock busy {self.lock_path}; retry {attempt + 1}/{self.retries} in {delay:.3f}s"
            )
            time.sleep(delay)
            attempt += 1

    def release(self) -> None:
        if self._token is None:
            return
        token, self._token = self._token, None
        try:
            with open(self.lock_path, "r", encoding="utf-8") as f:
                owner = f.read()
        except FileNotFoundError:
            logger.warning(f"Lock {self.lock_path} vanished before release")
            return
        if f"token={token}" not in owner:
            # Reclaimed as stale by another process while we held it.
            logger.warning(f"Lock {self.lock_path} is no longer ours; leaving it in place")
            return
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
