"""Prometheus service discovery for Scaleway compute instances."""

__version__ = "0.1.0"
