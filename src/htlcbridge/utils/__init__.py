"""Utility modules for htlcbridge."""

from htlcbridge.utils.locks import LockTimeoutError, SwapLockRegistry

__all__ = ["LockTimeoutError", "SwapLockRegistry"]
