"""Position tracking and map viewport package."""

__version__ = "0.1.0"
