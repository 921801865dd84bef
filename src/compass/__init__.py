"""Compass: retrieval-augmented answers over a tenant's knowledge base."""

__version__ = "0.1.0"
