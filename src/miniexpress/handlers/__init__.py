"""
Ready-made route handlers.

    demo.py    The reference deployment served by `python -m miniexpress`
"""

from .demo import register_demo_routes

__all__ = ["register_demo_routes"]
