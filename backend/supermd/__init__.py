"""SuperMD backend: collaborative document relay and agent memory."""

__version__ = "0.1.0"
