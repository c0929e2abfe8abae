"""Configuration module for the directory provider."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
