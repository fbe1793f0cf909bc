# API package for Pulsewire
"""HTTP surface for webhook deliveries."""

from .app import create_app
from .webhook import router

__all__ = ["create_app", "router"]
