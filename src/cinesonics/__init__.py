"""Quota-guarded proxy for AI-generated movie soundtrack concepts."""

__version__ = "0.1.0"
