"""URL Assistant: browser-facing forwarder to lab backends."""

__version__ = "1.0.0"
