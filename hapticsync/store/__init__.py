"""Intensity track and settings persistence."""
