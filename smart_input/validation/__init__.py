"""Draft validation package."""

from smart_input.validation.validator import DraftValidator

__all__ = ["DraftValidator"]
