"""Crash Rocket: seed-derived crash game round engine."""

__version__ = "1.0.0"
