"""OpenSRI - electronic fiscal document pipeline for marketplace orders."""

__version__ = "0.3.0"
