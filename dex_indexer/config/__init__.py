"""Configuration module"""

from .models import SyncConfig, Settings

__all__ = ["SyncConfig", "Settings"]
