"""oakevo — Oak Architecture evolution loop over a population of meta-agents."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("oakevo")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
