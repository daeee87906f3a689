"""Watch sessions and the per-kind event classifiers they use."""

from userpods.collector.watcher import WatchSession

__all__ = ["WatchSession"]
