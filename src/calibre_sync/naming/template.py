"""Filename template rendering.

A template is plain text with ``{...}`` expressions:

- ``{field}`` -- the field's value, or nothing when empty.
- ``{field:||suffix}`` -- value followed by *suffix*, only when set.
- ``{field:prefix||}`` -- *prefix* followed by value, only when set.

Built-in fields are ``title``, ``author_sort``, ``authors``, ``series``,
``series_index`` and ``id``.  ``#label`` (or bare ``label``) addresses a
custom column.  Before substitution, values are remapped through the
configured field mappings (e.g. ``Fantasy`` -> ``0200 - Fantasy``).

After substitution, separators left dangling by empty fields
(``A -  - B``, a leading or trailing `` - ``) and runs of whitespace are
collapsed, so the result is stable for a given record and configuration.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from ..catalog.models import Record

_EXPRESSION = re.compile(r"\{([^}]*)\}")
_REPEATED_SEPARATOR = re.compile(r"(?:\s*-\s*){2,}")
_LEADING_SEPARATOR = re.compile(r"^\s*-\s*")
_TRAILING_SEPARATOR = re.compile(r"\s*-\s*$")
_WHITESPACE = re.compile(r"\s+")
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

# Bytes, the common limit for one path component.
MAX_FILENAME_LENGTH = 255


class TemplateRenderer:
    """Render a record's human-readable base name.

    Args:
        template: Template string with ``{...}`` expressions.
        field_mappings: Field label -> {raw value -> replacement}.
    """

    def __init__(
        self,
        template: str,
        field_mappings: Mapping[str, Mapping[str, str]] | None = None,
    ) -> None:
        self.template = template
        self._mappings = {
            _clean_field_name(name): dict(values)
            for name, values in (field_mappings or {}).items()
        }

    def render(self, record: Record) -> str:
        result = _EXPRESSION.sub(
            lambda m: self._evaluate(m.group(1), record), self.template
        )
        result = _REPEATED_SEPARATOR.sub(" - ", result)
        result = _LEADING_SEPARATOR.sub("", result)
        result = _TRAILING_SEPARATOR.sub("", result)
        return _WHITESPACE.sub(" ", result).strip()

    def field_value(self, field_name: str, record: Record) -> str:
        """Value of *field_name* for *record* after field remapping."""
        name = _clean_field_name(field_name)
        value = _raw_value(name, record)
        mapping = self._mappings.get(name)
        if value and mapping and value in mapping:
            return mapping[value]
        return value

    def _evaluate(self, expression: str, record: Record) -> str:
        if ":" not in expression:
            return self.field_value(expression, record)

        field_name, condition = expression.split(":", 1)
        value = self.field_value(field_name, record)
        if not value:
            return ""
        if condition.startswith("||"):
            return value + condition[2:]
        if condition.endswith("||"):
            return condition[:-2] + value
        return value

    @staticmethod
    def field_names(template: str) -> list[str]:
        """List the distinct field names a template references, in order.

        Raises:
            ValueError: If an expression has no field name (``{}``, ``{:x}``).
        """
        names: list[str] = []
        for match in _EXPRESSION.finditer(template):
            name = _clean_field_name(match.group(1).split(":", 1)[0])
            if not name:
                raise ValueError(f"Invalid template expression: {match.group(0)}")
            if name not in names:
                names.append(name)
        return names


def sanitize_filename(name: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Strip characters that are invalid in filenames and bound the length.

    *max_length* counts UTF-8 bytes.  A cut never splits a character.
    """
    cleaned = _INVALID_FILENAME_CHARS.sub("", name)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    encoded = cleaned.encode("utf-8")
    if len(encoded) <= max_length:
        return cleaned
    return encoded[:max_length].decode("utf-8", errors="ignore").rstrip()


def _clean_field_name(name: str) -> str:
    return name.strip().lstrip("#")


def _raw_value(name: str, record: Record) -> str:
    match name:
        case "title":
            return record.title or ""
        case "author_sort":
            return record.author_sort or ""
        case "authors":
            return record.authors or ""
        case "series":
            return record.series or ""
        case "series_index":
            if not record.series or record.series_index is None:
                return ""
            return _format_number(record.series_index)
        case "id":
            return str(record.id)
        case _:
            value = record.extras.get(name)
            return "" if value is None else str(value)


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
