"""Evidence sync service: connects third-party systems to the compliance evidence pipeline."""

__version__ = "1.0.0"
