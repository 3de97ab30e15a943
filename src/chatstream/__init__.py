"""Streaming generation session engine for conversational LLM agents."""

__version__ = "0.1.0"
