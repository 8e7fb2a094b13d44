"""Questforce - tool-calling agent runtime for the question bank."""

__version__ = "0.1.0"
