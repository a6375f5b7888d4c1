"""Configuration package for the payment aggregator."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
