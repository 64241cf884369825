"""Configuration module."""

from agentsched.core.config.loader import load_config
from agentsched.core.config.schema import Config

__all__ = ["Config", "load_config"]
