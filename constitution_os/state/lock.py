from __future__ import annotations

import fcntl
import logging
import time
from pathlib import Path
from types import TracebackType
from typing import IO, Optional, Type, Union

from ..contracts.errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_RETRIES = 200
LOCK_WAIT_MS = 25


class ExclusiveFileLock:
    """
    Advisory exclusive lock on `<state_dir>/.lock` (flock).

    Acquisition tries a non-blocking flock; while another holder has it, it
    sleeps `wait_ms` and retries, at most `retries` attempts, then raises
    LockTimeoutError. The kernel drops the lock if the holder dies, so a
    crashed writer never leaves the directory locked. The lock file itself
    is left in place. Each handle opens its own descriptor, which makes
    threads of one process exclude each other too. Not re-entrant.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        retries: int = LOCK_RETRIES,
        wait_ms: int = LOCK_WAIT_MS,
    ) -> None:
        self.path = Path(path)
        self.retries = max(1, int(retries))
        self.wait_ms = max(0, int(wait_ms))
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            raise RuntimeError(f"lock already held by this handle: {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.path.open("a+", encoding="utf-8")

        for attempt in range(self.retries):
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                if attempt + 1 < self.retries:
                    time.sleep(self.wait_ms / 1000)
                continue
            self._handle = handle
            return

        handle.close()
        logger.warning(
            "state lock timeout",
            extra={"context": {"lock": str(self.path), "retries": self.retries, "wait_ms": self.wait_ms}},
        )
        raise LockTimeoutError(f"state lock timeout: {self.path}")

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    def __enter__(self) -> "ExclusiveFileLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
