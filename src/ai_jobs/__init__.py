"""Durable job engine for AI responses in chat conversations."""

__version__ = "0.1.0"
