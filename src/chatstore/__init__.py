"""chatstore - Chat persistence on top of the BigQuery REST API."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("chatstore")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
