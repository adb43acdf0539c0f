"""maphp — a local PHP version manager."""

__version__ = "0.1.0"
