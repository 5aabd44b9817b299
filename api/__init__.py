"""Collector HTTP API."""
