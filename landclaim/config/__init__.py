"""
Configuration for the claim engine.
"""

from .config import Settings, settings

__all__ = ['Settings', 'settings']
