"""
Infrastructure Configuration - Unified Configuration System
==========================================================
Single source of truth for all application configuration.

- AppSettings is the single source of truth
- Settings are created once in main.py and passed to the Container
"""

from .settings import AppSettings, find_missing_settings

__all__ = ['AppSettings', 'find_missing_settings']
