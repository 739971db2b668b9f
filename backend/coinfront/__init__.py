"""coinfront: caching and streaming front for a rate-limited crypto price API."""

__version__ = "0.1.0"
