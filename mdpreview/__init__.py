"""Live markdown preview server and static HTML builder."""

__version__ = "0.1.0"
