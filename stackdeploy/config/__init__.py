"""Configuration module for stackdeploy."""

from stackdeploy.config.settings import DeployConfig, StackConfig, load_config

__all__ = ["DeployConfig", "StackConfig", "load_config"]
