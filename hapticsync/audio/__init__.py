"""Decoding and feature extraction."""
