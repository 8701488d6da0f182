"""Prompt Library - catalog of prompt cards with output and reference images."""

__version__ = "0.1.0"

from promptlib.core.config import PromptLibConfig, config
from promptlib.core.lifecycle import CardService

__all__ = [
    "CardService",
    "PromptLibConfig",
    "config",
]
