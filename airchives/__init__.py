"""Airchives garment intake and virtual model photo generation service."""

__version__ = "1.0.0"
