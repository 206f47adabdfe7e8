"""Public interface for the configuration document adapter."""

from __future__ import annotations

from .loader import SUPPORTED_SUFFIXES, load_configuration, parse_configuration
from .schema import ConfigurationDocument, ResourceEntry, VariableEntry

__all__ = [
    "SUPPORTED_SUFFIXES",
    "ConfigurationDocument",
    "ResourceEntry",
    "VariableEntry",
    "load_configuration",
    "parse_configuration",
]
