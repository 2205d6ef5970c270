"""Scoring configuration (see settings.py)."""
