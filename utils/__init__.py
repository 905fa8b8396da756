"""Shared utilities: logging and async helpers."""
