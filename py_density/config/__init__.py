"""
Configuration for the density engine.
"""

from .config import Settings, settings

__all__ = ['Settings', 'settings']
