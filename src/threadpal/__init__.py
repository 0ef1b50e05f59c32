"""threadpal: route chat threads to interchangeable coding agents."""

__version__ = "0.1.0"
