"""Structured configuration."""
