"""Composable dialers, listeners and packet proxies for tunnelled TCP and UDP traffic."""

__version__ = "0.1.0"