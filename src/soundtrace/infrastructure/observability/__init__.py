"""Logging setup and helpers."""
