"""Ait, a terminal chat client for large language models."""

__version__ = "0.4.1"
