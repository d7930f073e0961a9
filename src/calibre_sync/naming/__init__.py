"""Filename rendering from record metadata."""

from .template import MAX_FILENAME_LENGTH, TemplateRenderer, sanitize_filename

__all__ = ["MAX_FILENAME_LENGTH", "TemplateRenderer", "sanitize_filename"]
