"""
Configuration package for huddle.
"""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
