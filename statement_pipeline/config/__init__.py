"""
Configuration module for the statement pipeline.
"""

from .processor_config import (
    PipelineConfig,
    ConfigManager,
    get_config_manager,
    get_config
)

__all__ = [
    'PipelineConfig',
    'ConfigManager',
    'get_config_manager',
    'get_config'
]
