"""Upstream DNS transports."""
