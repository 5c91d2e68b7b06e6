"""Work-item synchronization and local cache engine."""

__version__ = "0.4.0"
