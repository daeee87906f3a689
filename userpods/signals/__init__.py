"""Timeout-bounded readiness signals and their AND-combinator."""

from userpods.signals.combinator import combine, receive_all
from userpods.signals.readiness import ReadinessSignal

__all__ = ["ReadinessSignal", "combine", "receive_all"]
