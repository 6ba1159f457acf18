"""
SQL filter templating for virtual datasets.

Templates are Jinja2 rendered in a sandbox with a single ``filters`` variable.
Autoescaping is off because the output is SQL, not HTML; values are made safe
by the ``safe_*`` filters, which are total and return ``None`` (rendered as an
empty string) for absent or unusable input.
"""

from __future__ import annotations

import math
import re
from datetime import date
from typing import Any, Mapping, Optional

from jinja2 import ChainableUndefined, TemplateError, Undefined, nodes
from jinja2.sandbox import SandboxedEnvironment

from querybridge.core.exceptions import ConfigurationError


TEMPLATE_MARKER_RE = re.compile(r"\{\{|\{%")
DATE_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_FILTER_REF_RE = re.compile(r"\bfilters(?:\.(\w+)|\[\s*['\"]([^'\"]+)['\"]\s*\])")

FILTERS_VAR = "filters"


def _is_blank(value: Any) -> bool:
    return value is None or isinstance(value, Undefined) or value == ""


def _quote_escape(value: Any) -> str:
    return str(value).replace("'", "''")


def safe_string(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    return _quote_escape(value)


def safe_list(value: Any) -> Optional[str]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return None
    items = [f"'{_quote_escape(v)}'" for v in value if not _is_blank(v)]
    return ", ".join(items) if items else None


def safe_number(value: Any) -> Optional[int | float]:
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def safe_date(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    if isinstance(value, date):
        return value.isoformat()
    text = str(value)
    if DATE_PREFIX_RE.match(text):
        return _quote_escape(text)
    return None


def _finalize(value: Any) -> Any:
    return "" if value is None else value


class FilterTemplateEngine:
    def __init__(self) -> None:
        self.env = SandboxedEnvironment(
            autoescape=False,
            undefined=ChainableUndefined,
            finalize=_finalize,
            keep_trailing_newline=True,
        )
        self.env.filters.update(
            safe_string=safe_string,
            safe_list=safe_list,
            safe_number=safe_number,
            safe_date=safe_date,
        )

    @staticmethod
    def has_template_variables(sql: Optional[str]) -> bool:
        return bool(sql) and bool(TEMPLATE_MARKER_RE.search(sql or ""))

    def render(self, sql_template: str, filter_context: Optional[Mapping[str, Any]] = None) -> str:
        """Render ``sql_template`` with ``filters`` bound to ``filter_context``.

        Missing filters render as empty strings. Syntax errors and runtime
        failures inside the template raise ``ConfigurationError``.
        """
        try:
            template = self.env.from_string(sql_template)
            return template.render({FILTERS_VAR: dict(filter_context or {})})
        except (TemplateError, TypeError, ValueError, ArithmeticError) as exc:
            raise ConfigurationError(f"Template rendering failed: {exc}") from exc

    def validate(self, sql_template: str) -> dict:
        try:
            self.env.compile(sql_template)
        except TemplateError as exc:
            return {"valid": False, "error": str(exc)}
        return {"valid": True}

    def extract_variable_names(self, sql_template: str) -> list[str]:
        try:
            ast = self.env.parse(sql_template)
        except TemplateError:
            return _unique(m.group(1) or m.group(2) for m in _FILTER_REF_RE.finditer(sql_template or ""))

        names: list[str] = []
        for node in ast.find_all((nodes.Getattr, nodes.Getitem)):
            if not (isinstance(node.node, nodes.Name) and node.node.name == FILTERS_VAR):
                continue
            if isinstance(node, nodes.Getattr):
                names.append(node.attr)
            elif isinstance(node.arg, nodes.Const) and isinstance(node.arg.value, str):
                names.append(node.arg.value)
        return _unique(names)


def _unique(names) -> list[str]:
    seen: dict[str, None] = {}
    for name in names:
        if name:
            seen.setdefault(name, None)
    return list(seen)
