"""
Template rendering for email subjects and bodies

Templates use {{variable}} placeholders. Placeholders without a value are
left in the output untouched so a broken send is visible to whoever reads it.
"""

import re
from typing import Any, Callable, Dict, Mapping, Optional

from markupsafe import escape

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def _substitute(
    template: str,
    variables: Optional[Mapping[str, Any]],
    convert: Callable[[Any], str],
) -> str:
    variables = variables or {}

    def replace(match: "re.Match[str]") -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        return convert(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def render_template(template: str, variables: Optional[Dict[str, Any]] = None) -> str:
    """
    Replace {{key}} placeholders with str(variables[key])

    No escaping is applied. Values destined for HTML should go through
    render_html_template instead.
    """
    return _substitute(template, variables, str)


def render_html_template(template: str, variables: Optional[Dict[str, Any]] = None) -> str:
    """Same substitution as render_template but HTML-escapes every value"""
    return _substitute(template, variables, lambda value: str(escape(value)))
