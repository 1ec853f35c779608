"""Shared utilities (configuration, logging, money, retry policy)."""
