"""Fetching, scheduling and playback services."""
