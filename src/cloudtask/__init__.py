"""CloudTask asynchronous job pipeline: worker and results processor."""

__version__ = "0.1.0"
