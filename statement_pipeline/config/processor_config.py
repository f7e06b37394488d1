"""
Configuration management for the statement pipeline.
Handles primary and fallback OCR tools and per-stage pipeline settings.
"""

import copy
import json
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "primary_tools": {
        "ocr_engine": "tesseract",
        "pdf_renderer": "pymupdf",
        "image_processing": "opencv"
    },
    "fallback_tools": {
        "ocr_engine": "easyocr"
    },
    "processing": {
        "render_scale": 3.0,
        "max_pages": 0,
        "max_ocr_pages": 0,
        "timeout_seconds": 120,
        "max_batch_files": 20,
        "max_file_size_mb": 50,
        "preprocess_ocr": True,
        "locale": "auto"
    },
    "classification": {
        "text_threshold": 200,
        "scanned_page_min_words": 10
    },
    "ocr_config": {
        "confidence_threshold": 0.6,
        "default_languages": ["eng"],
        "page_segmentation_mode": 6,
        "preserve_interword_spaces": True,
        "gpu": False
    },
    "preprocessing_config": {
        "skew_detection_threshold": 0.5,
        "skew_search_range": 10.0,
        "skew_search_step": 0.5,
        "max_skew_samples": 20000,
        "dark_background_threshold": 128,
        "contrast_factor": 1.4,
        "sharpen_amount": 0.3,
        "median_radius": 1
    },
    "detection_config": {
        "exact_match_threshold": 0.8,
        "extra_profile_paths": []
    },
    "duplicate_config": {
        "enabled": True,
        "date_tolerance": 1,
        "description_similarity_threshold": 0.7,
        "require_exact_amount": True,
        "amount_tolerance": 0.01
    },
    "merge_config": {
        "sort_by_date": True,
        "add_source_column": True,
        "validate_continuity": False,
        "handle_gaps": "warn"
    }
}


@dataclass
class PipelineConfig:
    """Configuration class for the statement pipeline."""

    # Tool configurations
    primary_tools: Dict[str, str]
    fallback_tools: Dict[str, str]

    # Orchestration settings
    processing: Dict[str, Any]
    classification: Dict[str, Any]

    # Stage-specific configurations
    ocr_config: Dict[str, Any]
    preprocessing_config: Dict[str, Any]
    detection_config: Dict[str, Any]
    duplicate_config: Dict[str, Any]
    merge_config: Dict[str, Any]

    @classmethod
    def defaults(cls) -> 'PipelineConfig':
        """Build a configuration from the built-in defaults."""
        return cls(**copy.deepcopy(DEFAULT_CONFIG))


class ConfigManager:
    """Manages configuration loading and validation for the statement pipeline."""

    REQUIRED_SECTIONS = [
        'primary_tools', 'fallback_tools', 'processing', 'classification',
        'ocr_config', 'preprocessing_config', 'detection_config',
        'duplicate_config', 'merge_config'
    ]

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file. If None, uses the
                packaged pipeline_config.json and falls back to built-in
                defaults when that file is missing.
        """
        self._explicit_path = config_path is not None
        if config_path is None:
            current_dir = Path(__file__).parent
            config_path = current_dir / "pipeline_config.json"

        self.config_path = Path(config_path)
        self._config: Optional[PipelineConfig] = None

    def load_config(self) -> PipelineConfig:
        """
        Load configuration from the JSON file.

        Sections missing from the file are rejected; keys missing inside a
        section are filled from the built-in defaults.

        Returns:
            PipelineConfig: The loaded configuration object.

        Raises:
            FileNotFoundError: If an explicitly requested file doesn't exist.
            ValueError: If the configuration is invalid.
        """
        if not self.config_path.exists():
            if self._explicit_path:
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
            logger.warning(f"Configuration file not found: {self.config_path}, using defaults")
            self._config = PipelineConfig.defaults()
            return self._config

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")

        for section in self.REQUIRED_SECTIONS:
            if section not in config_data:
                raise ValueError(f"Missing required configuration section: {section}")
            if not isinstance(config_data[section], dict):
                raise ValueError(f"Configuration section '{section}' must be an object")

        merged = {}
        for section in self.REQUIRED_SECTIONS:
            merged[section] = {**DEFAULT_CONFIG[section], **config_data[section]}

        self._config = PipelineConfig(**merged)
        return self._config

    def get_config(self) -> PipelineConfig:
        """
        Get the current configuration, loading it if necessary.

        Returns:
            PipelineConfig: The current configuration object.
        """
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def get_tool_config(self, tool_type: str, primary: bool = True) -> str:
        """
        Get the configured tool for a specific type.

        Args:
            tool_type: Type of tool (e.g., 'ocr_engine')
            primary: Whether to get primary (True) or fallback (False) tool

        Returns:
            str: The configured tool name

        Raises:
            ValueError: If the tool type is not configured
        """
        config = self.get_config()
        tools = config.primary_tools if primary else config.fallback_tools

        if tool_type not in tools:
            available_tools = list(tools.keys())
            raise ValueError(
                f"Tool type '{tool_type}' not configured. "
                f"Available: {available_tools}"
            )

        return tools[tool_type]

    def is_tool_available(self, tool_name: str) -> bool:
        """
        Check if a specific tool is available (can be imported).

        Args:
            tool_name: Name of the tool to check

        Returns:
            bool: True if the tool is available, False otherwise
        """
        tool_imports = {
            'tesseract': 'pytesseract',
            'easyocr': 'easyocr',
            'opencv': 'cv2',
            'pymupdf': 'fitz',
            'pandas': 'pandas',
            'pil': 'PIL'
        }

        if tool_name not in tool_imports:
            return False

        try:
            __import__(tool_imports[tool_name])
            return True
        except ImportError:
            return False

    def validate_configuration(self) -> Dict[str, Any]:
        """
        Validate the current configuration and check tool availability.

        Returns:
            Dict[str, Any]: Validation results with available/unavailable tools
        """
        config = self.get_config()

        validation_result = {
            'valid': True,
            'primary_tools_available': {},
            'fallback_tools_available': {},
            'missing_tools': [],
            'warnings': []
        }

        for tool_type, tool_name in config.primary_tools.items():
            available = self.is_tool_available(tool_name)
            validation_result['primary_tools_available'][tool_type] = {
                'tool': tool_name,
                'available': available
            }
            if not available:
                validation_result['missing_tools'].append(f"Primary {tool_type}: {tool_name}")
                validation_result['valid'] = False

        for tool_type, tool_name in config.fallback_tools.items():
            available = self.is_tool_available(tool_name)
            validation_result['fallback_tools_available'][tool_type] = {
                'tool': tool_name,
                'available': available
            }
            if not available:
                validation_result['warnings'].append(f"Fallback {tool_type}: {tool_name} not available")

        threshold = config.ocr_config.get('confidence_threshold', 0.6)
        if not 0.0 <= threshold <= 1.0:
            validation_result['valid'] = False
            validation_result['warnings'].append(
                f"ocr_config.confidence_threshold must be within [0, 1], got {threshold}"
            )

        if config.merge_config.get('handle_gaps') not in ('warn', 'flag', 'ignore'):
            validation_result['valid'] = False
            validation_result['warnings'].append(
                "merge_config.handle_gaps must be warn, flag or ignore"
            )

        return validation_result


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        config_path: Path to configuration file (only used on first call)

    Returns:
        ConfigManager: The global configuration manager
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def get_config() -> PipelineConfig:
    """
    Get the current pipeline configuration.

    Returns:
        PipelineConfig: The current configuration
    """
    return get_config_manager().get_config()
