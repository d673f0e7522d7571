"""
SynPat Configuration
YAML configuration loading with built-in defaults
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG: Dict[str, Any] = {
    'paths': {
        'database': 'output/synpat.db',
        'output_folder': 'output/pdfs',
        'export_folder': 'output/exports',
        'report_folder': 'output/reports',
        'temp_folder': 'output/pdfs/temp',
    },
    'storage': {
        'base_url': 'http://localhost/synpat-pdfs',
        'export_url': 'http://localhost/synpat-exports',
        'report_url': 'http://localhost/synpat-reports',
    },
    'pdf': {
        'converter_paths': ['/usr/bin/wkhtmltopdf', '/usr/local/bin/wkhtmltopdf', 'wkhtmltopdf'],
        'merge_tool_paths': ['gs', '/usr/bin/gs', '/usr/local/bin/gs'],
        'tool_timeout': 120,
        'temp_max_age_hours': 24,
        'footer_text': 'Confidential - Generated by SynPat',
    },
    'batch': {
        'size': 50,
        'pause_seconds': 1.0,
        'job_delay_seconds': 60,
    },
    'import': {
        'api_timeout': 15.0,
    },
    'logging': {
        'level': 'INFO',
        'file': 'output/synpat.log',
        'verbose': False,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Defaults merged with ``overrides``; user values win"""
    return _deep_merge(DEFAULT_CONFIG, overrides or {})


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        user_config = yaml.safe_load(f) or {}

    config = build_config(user_config)

    # Ensure required directories exist
    for path_key in ['output_folder', 'export_folder', 'report_folder', 'temp_folder']:
        path = config['paths'].get(path_key)
        if path:
            Path(path).mkdir(parents=True, exist_ok=True)

    # Ensure database directory exists
    Path(config['paths']['database']).parent.mkdir(parents=True, exist_ok=True)

    return config
