"""CourierHub - shipping aggregation over third-party courier vendors."""

__version__ = "1.0.0"
