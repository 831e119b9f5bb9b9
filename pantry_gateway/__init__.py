"""Enrichment gateway in front of a Grocy inventory backend."""

__version__ = "0.1.0"
