"""Public interface for the header template file adapter."""

from __future__ import annotations

from .loader import (
    dump_template,
    load_bundled_templates,
    load_external_templates,
    load_template_catalog,
    load_template_file,
    parse_template_text,
)
from .schema import FieldPayload, TemplatePayload

__all__ = [
    "FieldPayload",
    "TemplatePayload",
    "dump_template",
    "load_bundled_templates",
    "load_external_templates",
    "load_template_catalog",
    "load_template_file",
    "parse_template_text",
]
