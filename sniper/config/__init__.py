"""Configuration management module."""

from sniper.config.settings import Settings, TradingConfig, create_default_config, load_settings

__all__ = ["Settings", "TradingConfig", "create_default_config", "load_settings"]
