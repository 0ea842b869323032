"""
Dark Pool Node

HTTP surface for order intake, channel operations and read-only views.
"""

from .main import create_app

__all__ = ["create_app"]
