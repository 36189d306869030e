"""Configuration loading."""

from cmdexec.lib.config.settings import ExecutorConfig, config_path_for, load_config

__all__ = ["ExecutorConfig", "config_path_for", "load_config"]
