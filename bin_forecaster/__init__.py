"""Bin fill-level forecasting: prediction refresh and collection priority ranking."""

__version__ = "0.1.0"
