"""Command line interface for Venue Fusion."""
