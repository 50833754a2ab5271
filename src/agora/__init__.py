"""Agora — assembly resolutions, ternary voting, participation certificates."""

__version__ = "0.1.0"
