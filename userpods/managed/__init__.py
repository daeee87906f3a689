"""Read-through views over cluster objects owned by platform users."""

from userpods.managed.pod import Pod

__all__ = ["Pod"]
