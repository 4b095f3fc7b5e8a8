"""Venue Fusion - multi-source fitness venue data fusion."""

__version__ = "0.1.0"
