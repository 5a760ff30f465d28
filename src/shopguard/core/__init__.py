"""Core application module."""
