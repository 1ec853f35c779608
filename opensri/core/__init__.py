"""Fiscal pipeline core services."""
