"""Listing Flow: product photo to Etsy draft listing."""

__version__ = "0.1.0"
