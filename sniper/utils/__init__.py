"""Small shared utilities."""

from sniper.utils.process_lock import AlreadyRunningError, LockOwner, ProcessLock

__all__ = ["AlreadyRunningError", "LockOwner", "ProcessLock"]
