"""Soundtrace - Spotify listening history ingestion and question answering."""

__version__ = "0.1.0"
