"""Template rendering and management for notifications.

Templates hold channel-shaped content (email subject/html/text, SMS text,
push and in-app title/body) with Jinja2 placeholders rendered in a sandbox.
"""

from __future__ import annotations

from notification_service.features.notifications.templates.renderer import (
    TemplateRenderer,
    TemplateRenderError,
    get_template_renderer,
)
from notification_service.features.notifications.templates.service import (
    TemplateService,
    get_template_service,
    validate_template_content,
)

__all__ = [
    "TemplateRenderError",
    "TemplateRenderer",
    "TemplateService",
    "get_template_renderer",
    "get_template_service",
    "validate_template_content",
]
