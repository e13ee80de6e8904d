# -*- coding: utf-8 -*-
"""Renders composed fields with Jinja2.

Templates read other secrets through ``secret(name, key, optional=False)``. A required
lookup that finds nothing renders as an empty string and marks the result incomplete, so
the caller can retry once the secret exists. Optional lookups never mark it incomplete.
"""

import base64
import logging

from jinja2 import Environment, StrictUndefined, TemplateError

from .exceptions import TemplateRenderError

AUTOESCAPE_FORMATS = ("xml", "html")


def _b64enc(value):
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def _b64dec(value):
    return base64.b64decode(str(value)).decode("utf-8")


class TemplateRenderer:

    def __init__(self):
        self._environments = {
            autoescape: self._environment(autoescape) for autoescape in (False, True)
        }

    @staticmethod
    def _environment(autoescape):
        env = Environment(undefined=StrictUndefined,
                          autoescape=autoescape,
                          trim_blocks=True,
                          lstrip_blocks=True,
                          keep_trailing_newline=True)
        env.filters["b64enc"] = _b64enc
        env.filters["b64dec"] = _b64dec
        return env

    def render(self, template_body, lookup, template_format=None, field_name=None):
        """Render a template body.

        Args:
            template_body (str): the Jinja2 source.
            lookup (callable): ``lookup(name, key)`` returning a tuple (value, found).
            template_format (str, optional): ``xml`` or ``html`` escape substituted values.
            field_name (str, optional): used in error messages.

        Returns:
            tuple: (rendered text, all required references satisfied)

        Raises:
            TemplateRenderError: on a syntax or evaluation error.
        """
        missing = []

        def secret(name, key, optional=False):
            value, found = lookup(name, key)
            if not found or value == "":
                if not optional:
                    missing.append(f"{name}.{key}")
                return ""
            return value

        env = self._environments[(template_format or "").lower() in AUTOESCAPE_FORMATS]
        try:
            template = env.from_string(template_body)
            rendered = template.render(secret=secret)
        except (TemplateError, TypeError, ValueError) as e:
            raise TemplateRenderError(field_name, e)

        if missing:
            logging.getLogger(__name__).debug(
                f"Template for {field_name} is missing {', '.join(missing)}")
        return str(rendered), not missing
