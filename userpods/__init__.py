"""userpods - per-user pod provisioning for Kubernetes."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("userpods")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
