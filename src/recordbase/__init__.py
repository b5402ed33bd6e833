"""recordbase - tenant-defined tables and typed records over a document store."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("recordbase")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
