"""
Utility modules for the crawl service.
"""

from .config import Config, ConfigManager, load_config, get_config

__all__ = ['Config', 'ConfigManager', 'load_config', 'get_config']