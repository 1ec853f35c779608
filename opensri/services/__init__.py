"""Rendering services."""
