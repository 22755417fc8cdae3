"""
Configuration for the dataset preparation tools.
"""

from .config import (
    Config,
    InputConfig,
    MergeConfig,
    NegativesConfig,
    OutputConfig,
    SplitConfig,
    VOCConfig,
    build_parser,
    load_config,
    load_yaml_config,
    merge_configs,
    parse_args,
)

__all__ = [
    "Config",
    "InputConfig",
    "MergeConfig",
    "NegativesConfig",
    "OutputConfig",
    "SplitConfig",
    "VOCConfig",
    "build_parser",
    "load_config",
    "load_yaml_config",
    "merge_configs",
    "parse_args",
]
