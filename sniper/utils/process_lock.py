"""Exclusive lock on a state directory.

Two sniper processes sharing one trade-state file could both see a mint as
UNTRADED and buy it twice. Startup therefore takes an OS-level lock on
``<state_path>/sniper.lock`` before any store is opened, and records who
holds it so a refused second process can say which run it collided with.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import orjson

from sniper.models import utc_now

LOCK_FILE = "sniper.lock"


@dataclass(frozen=True)
class LockOwner:
    pid: int
    mode: str
    started_at: datetime | None = None

    def to_bytes(self) -> bytes:
        return orjson.dumps(
            {
                "pid": self.pid,
                "mode": self.mode,
                "started_at": self.started_at.isoformat() if self.started_at else None,
            }
        )

    @classmethod
    def parse(cls, raw: bytes) -> LockOwner | None:
        """Decode a lock record; anything unreadable means the owner is unknown."""
        try:
            data: Any = orjson.loads(raw)
        except orjson.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        pid = data.get("pid")
        if not isinstance(pid, int) or pid <= 0:
            return None
        started = data.get("started_at")
        try:
            started_at = datetime.fromisoformat(started) if isinstance(started, str) else None
        except ValueError:
            started_at = None
        return cls(pid=pid, mode=str(data.get("mode") or "unknown"), started_at=started_at)


class AlreadyRunningError(RuntimeError):
    """The state directory is locked by another sniper process."""

    def __init__(self, lock_path: Path, owner: LockOwner | None) -> None:
        self.lock_path = lock_path
        self.owner = owner
        if owner is None:
            detail = "owner unknown"
        else:
            detail = f"held by pid {owner.pid} in {owner.mode} mode"
        super().__init__(f"Refusing to share trade state at {lock_path.parent} ({detail})")

    @property
    def pid(self) -> int | None:
        return self.owner.pid if self.owner else None


class ProcessLock:
    """Hold ``sniper.lock`` for the life of the process.

    Usable as a context manager. The OS drops the lock if the process dies,
    so a stale record never blocks the next start.
    """

    def __init__(self, state_path: str | Path, mode: str = "dry_run") -> None:
        self.path = Path(state_path) / LOCK_FILE
        self.mode = mode
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> LockOwner:
        if self._fd is not None:
            raise RuntimeError(f"lock already held: {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        if not _try_lock(fd):
            previous = LockOwner.parse(_read_all(fd))
            os.close(fd)
            raise AlreadyRunningError(self.path, previous)

        owner = LockOwner(pid=os.getpid(), mode=self.mode, started_at=utc_now())
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, owner.to_bytes())
        os.fsync(fd)
        self._fd = fd
        return owner

    def release(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            _unlock(fd)
        finally:
            os.close(fd)

    def __enter__(self) -> ProcessLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.release()


def _read_all(fd: int) -> bytes:
    os.lseek(fd, 0, os.SEEK_SET)
    chunks: list[bytes] = []
    while True:
        try:
            chunk = os.read(fd, 4096)
        except OSError:
            # Windows refuses reads of the byte another process has locked.
            break
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


if os.name == "nt":
    import msvcrt

    def _try_lock(fd: int) -> bool:
        os.lseek(fd, 0, os.SEEK_SET)
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)
