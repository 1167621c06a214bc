"""Kestrel: a turn-based task-execution engine for LLM coding agents."""

__version__ = "0.1.0"
