"""Backend forwarding for /proxy/{key1}/{key2}/*."""

from .engine import ProxyEngine
from .router import router

__all__ = ["ProxyEngine", "router"]
