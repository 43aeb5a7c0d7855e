"""Intake queue and build pipeline for uploaded worksheet archives."""

__version__ = "0.1.0"
