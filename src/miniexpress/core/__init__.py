"""
Transport layer: the per-socket connection loop and request body framing.
"""

from .connection import Connection, ConnectionState

__all__ = ["Connection", "ConnectionState"]
