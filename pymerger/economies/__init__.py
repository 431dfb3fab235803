"""Merger simulation configuration and solving."""
