"""Command-line interface (``throttled``)."""
