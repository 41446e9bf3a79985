"""Marketplace synchronization core: taxonomy cache, links and attribute inheritance."""

__version__ = "0.1.0"
