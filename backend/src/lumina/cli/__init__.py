"""Lumina command line interface."""
