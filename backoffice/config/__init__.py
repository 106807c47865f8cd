"""Configuration module for the back-office core."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
