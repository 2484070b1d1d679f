"""Logging setup and preference storage shared across the provider."""
