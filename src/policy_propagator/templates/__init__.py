"""Hub template resolution and per-replica template processing."""

from policy_propagator.templates.processor import (
    TEMPLATE_CAPABLE_KINDS,
    SpecValidityError,
    TemplateProcessor,
)
from policy_propagator.templates.resolver import (
    TemplateResolutionError,
    TemplateResolver,
    has_template,
)

__all__ = [
    "SpecValidityError",
    "TEMPLATE_CAPABLE_KINDS",
    "TemplateProcessor",
    "TemplateResolutionError",
    "TemplateResolver",
    "has_template",
]
