"""Delivery Tracker: multi-platform delivery order tracking backend."""

__version__ = "1.0.0"
