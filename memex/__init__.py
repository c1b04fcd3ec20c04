"""Shard bookkeeping, hash-chained audit log, markdown corpus driver and operator CLI for memex."""

__version__ = "0.1.0"