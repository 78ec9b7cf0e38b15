"""HTTP API for recap."""

__version__ = "0.1.0"
