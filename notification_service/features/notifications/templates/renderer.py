"""Jinja2 rendering of channel-shaped template content."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from jinja2 import StrictUndefined, TemplateError, UndefinedError, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

if TYPE_CHECKING:
    from notification_service.features.notifications.models import NotificationTemplate

# Content keys rendered with HTML autoescaping
_HTML_KEYS = frozenset({"html"})


class TemplateRenderError(Exception):
    """Raised when template rendering fails."""

    def __init__(
        self,
        message: str,
        template_name: str | None = None,
        missing_vars: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.template_name = template_name
        self.missing_vars = missing_vars or []


def format_date(value: Any, fmt: str = "%b %d, %Y") -> str:
    """Format a datetime, date or ISO-8601 string."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, (datetime, date)):
        return value.strftime(fmt)
    return str(value)


def format_currency(value: Any, symbol: str = "$", places: int = 2) -> str:
    """Format a number as currency with thousands separators."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return str(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.{places}f}"


def truncate(value: Any, length: int = 100, ellipsis: str = "...") -> str:
    """Cut text to ``length`` characters, ellipsis included."""
    text = "" if value is None else str(value)
    if len(text) <= length:
        return text
    return text[: max(length - len(ellipsis), 0)] + ellipsis


def _build_environment(*, autoescape: bool) -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        autoescape=select_autoescape(default_for_string=True) if autoescape else False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["format_date"] = format_date
    env.filters["format_currency"] = format_currency
    env.filters["truncate"] = truncate
    return env


class TemplateRenderer:
    """Sandboxed Jinja2 renderer for template content.

    Content is a dict of channel fields (``subject``, ``html``, ``text``,
    ``title``, ``body`` ...). Every string value is rendered; nested dicts
    and lists are walked recursively and other values pass through.
    Undeclared variables that are not in the context raise as well, unless
    the template guards them with ``default``.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)
        self._text_env = _build_environment(autoescape=False)
        self._html_env = _build_environment(autoescape=True)

    def render_template(
        self,
        template: NotificationTemplate,
        context: dict[str, Any],
    ) -> dict[str, Any]:
        """Render every field of a template's content.

        Raises:
            TemplateRenderError: If a declared variable is missing or rendering fails
        """
        self._validate_context(template, context)
        try:
            rendered = self.render_content(template.content or {}, context)
        except UndefinedError as exc:
            msg = f"Missing variable in template {template.name}: {exc}"
            raise TemplateRenderError(msg, template_name=template.name) from exc
        except TemplateError as exc:
            msg = f"Failed to render template {template.name}: {exc}"
            raise TemplateRenderError(msg, template_name=template.name) from exc

        self._logger.debug("Rendered template %s for channel %s", template.name, template.channel)
        return rendered

    def render_content(self, content: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        return {
            key: self._render_value(value, context, html=key in _HTML_KEYS)
            for key, value in content.items()
        }

    def _render_value(self, obj: Any, context: dict[str, Any], *, html: bool = False) -> Any:
        if isinstance(obj, dict):
            return {k: self._render_value(v, context, html=k in _HTML_KEYS) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self._render_value(item, context, html=html) for item in obj]
        if isinstance(obj, str):
            if "{{" not in obj and "{%" not in obj:
                return obj
            env = self._html_env if html else self._text_env
            return env.from_string(obj).render(**context)
        return obj

    @staticmethod
    def _validate_context(template: NotificationTemplate, context: dict[str, Any]) -> None:
        missing = [var for var in (template.variables or []) if var not in context]
        if missing:
            msg = f"Missing required variables for template {template.name}: {', '.join(missing)}"
            raise TemplateRenderError(msg, template_name=template.name, missing_vars=missing)


_renderer: TemplateRenderer | None = None


def get_template_renderer() -> TemplateRenderer:
    """Get or create the singleton TemplateRenderer instance."""
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer
