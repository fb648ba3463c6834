"""Agristore order placement and fulfillment backend."""

__version__ = "1.0.0"
