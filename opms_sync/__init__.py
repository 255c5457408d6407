"""OPMS <-> NetSuite synchronization job engine."""

__version__ = "0.1.0"
