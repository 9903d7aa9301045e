"""Footnoter — chunked, resumable footnote annotation for manuscripts."""

__version__ = "0.1.0"
