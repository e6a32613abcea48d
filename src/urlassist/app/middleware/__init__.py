from .logging import LoggingMiddleware, classify_path

__all__ = ["LoggingMiddleware", "classify_path"]
