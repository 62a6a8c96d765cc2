"""Ephemeral blockchain test networks for benchmarking."""

__version__ = "0.1.0"
