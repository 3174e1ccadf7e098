"""
🚀 Leadbot Package Init
-----------------------
Lead detection and tracking engine for chat-group traffic.
"""

from .config import settings

__version__ = "1.0.0"

__all__ = ["settings", "__version__"]
