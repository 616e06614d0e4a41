from .base import BasePlugin

__all__ = ["BasePlugin"]
