"""Lumina - automatic REST APIs from declarative resource configuration."""

__version__ = "0.1.0"
