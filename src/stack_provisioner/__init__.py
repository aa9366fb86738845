"""Dependency-ordered plan/apply engine for multi-unit cloud infrastructure."""

__version__ = "0.1.0"
