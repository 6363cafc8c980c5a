"""Remote object lifecycle for snapshot backups: freshen, upload, reap."""

__version__ = "0.1.0"
