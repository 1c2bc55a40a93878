"""Rendering of parameterised policy documents.

Policy templates use `<%= name %>` markers for substitution, for example:

    {"Resource": "arn:aws:iot:<%= region %>:<%= account %>:client/<%= thingname %>"}

render() is a pure function of (template, bindings): no environment lookups,
no filesystem access, no autoescaping. Every marker must have a binding.
"""

from __future__ import annotations

from collections.abc import Mapping

import jinja2

VARIABLE_START = "<%="
VARIABLE_END = "%>"

# Binding always provided for device policies
THING_NAME_BINDING = "thingname"


class TemplateRenderError(Exception):
    """Raised when a template is malformed or references an unbound name."""

    pass


def _environment() -> jinja2.Environment:
    return jinja2.Environment(
        variable_start_string=VARIABLE_START,
        variable_end_string=VARIABLE_END,
        undefined=jinja2.StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


def render(template: str, bindings: Mapping[str, str]) -> str:
    """Substitute bindings into a policy template.

    Args:
        template: Template text with `<%= name %>` markers.
        bindings: Values for every marker in the template.

    Returns:
        The rendered document.

    Raises:
        TemplateRenderError: If the template is malformed or a binding is missing.
    """
    try:
        return _environment().from_string(template).render(**dict(bindings))
    except jinja2.UndefinedError as e:
        raise TemplateRenderError(f"Unbound template parameter: {e.message}") from e
    except jinja2.TemplateSyntaxError as e:
        raise TemplateRenderError(f"Invalid template (line {e.lineno}): {e.message}") from e


def policy_bindings(thing_name: str, mapping: Mapping[str, str] | None = None) -> dict[str, str]:
    """Build bindings for a device policy; `thingname` always wins."""
    bindings = dict(mapping or {})
    bindings[THING_NAME_BINDING] = thing_name
    return bindings
