"""Service layer for notification template management."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
import uuid

from notification_service.core.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from notification_service.core.services.base import BaseService
from notification_service.features.notifications.enums import (
    DEFAULT_LOCALE,
    SUPPORTED_LOCALES,
    ChannelType,
    NotificationKind,
    is_valid,
)
from notification_service.features.notifications.models import NotificationTemplate
from notification_service.features.notifications.repository import (
    TemplateRepository,
    get_template_repository,
)
from notification_service.features.notifications.templates.renderer import (
    TemplateRenderError,
    TemplateRenderer,
    get_template_renderer,
)

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.database import SearchResult

# Required content keys per channel; a tuple entry means "any one of"
REQUIRED_CONTENT: dict[str, tuple[str | tuple[str, ...], ...]] = {
    ChannelType.EMAIL.value: ("subject", ("html", "text")),
    ChannelType.SMS.value: ("text",),
    ChannelType.PUSH.value: ("title", "body"),
    ChannelType.IN_APP.value: ("title", "body"),
}

_MUTABLE_FIELDS = ("name", "content", "variables", "description", "is_active")


def validate_template_content(channel: str, content: dict[str, Any]) -> list[str]:
    """Collect content-shape errors for a channel."""
    errors: list[str] = []
    for required in REQUIRED_CONTENT.get(channel, ()):
        if isinstance(required, tuple):
            if not any(content.get(key) for key in required):
                errors.append(f"{channel} template requires one of: {', '.join(required)}")
        elif not content.get(required):
            errors.append(f"{channel} template requires '{required}'")
    return errors


def fallback_content(kind: str, channel: str) -> dict[str, Any]:
    """Generic content used when no template exists for a tuple.

    Every placeholder is guarded by ``default`` so rendering never fails
    on a sparse context.
    """
    heading = kind.replace("_", " ").title()
    title = f"{{{{ title | default('{heading}') }}}}"
    message = "{{ message | default('You have a new notification.') }}"
    if channel == ChannelType.EMAIL.value:
        return {"subject": title, "text": message, "html": f"<p>{message}</p>"}
    if channel == ChannelType.SMS.value:
        return {"text": message}
    return {"title": title, "body": message}


class TemplateService(BaseService):
    """Template lookup, rendering and default management.

    Provides:
    - get_for_notification(): specific id, tuple default, en_US default,
      then an auto-created fallback (persisted, side effect)
    - render(): active check plus declared-variable check
    - set_default() / delete(): keep at most one default per tuple
    - CRUD used by the template endpoints
    """

    def __init__(
        self,
        repository: TemplateRepository | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_template_repository()
        self._renderer = renderer or get_template_renderer()

    # ------------------------------------------------------------------
    # Lookup and rendering
    # ------------------------------------------------------------------

    async def get_for_notification(
        self,
        session: AsyncSession,
        kind: str,
        channel: str,
        locale: str = DEFAULT_LOCALE,
        template_id: UUID | str | None = None,
    ) -> NotificationTemplate:
        """Template to render a notification with.

        Resolution order: the requested template when it exists, is active
        and was written for this kind and channel, the default for (kind, channel, locale), the default for
        (kind, channel, en_US), and finally a generated default that is
        persisted for the requested locale.
        """
        if template_id is not None:
            template = await self._lookup(session, template_id)
            if template is not None and template.is_active:
                if template.kind == kind and template.channel == channel:
                    return template
                self._lazy.debug(
                    lambda: f"template {template_id} is {template.kind}/{template.channel}, not {kind}/{channel}"
                )
            else:
                self.logger.warning(
                    "Requested template unavailable, falling back to default",
                    extra={"template_id": str(template_id), "kind": kind, "channel": channel},
                )

        template = await self._repository.get_default(session, kind, channel, locale)
        if template is None and locale != DEFAULT_LOCALE:
            template = await self._repository.get_default(session, kind, channel, DEFAULT_LOCALE)
        if template is not None:
            return template

        return await self._create_fallback(session, kind, channel, locale)

    async def _lookup(self, session: AsyncSession, template_id: UUID | str) -> NotificationTemplate | None:
        if not isinstance(template_id, uuid.UUID):
            try:
                template_id = uuid.UUID(str(template_id))
            except ValueError:
                return None
        return await self._repository.get(session, template_id)

    def render(self, template: NotificationTemplate, data: dict[str, Any]) -> dict[str, Any]:
        """Render a template against notification data.

        Raises:
            TemplateRenderError: If inactive, a declared variable is missing or rendering fails
        """
        if not template.is_active:
            msg = f"Template {template.name} is not active"
            raise TemplateRenderError(msg, template_name=template.name)
        return self._renderer.render_template(template, data)

    async def render_by_id(
        self,
        session: AsyncSession,
        template_id: UUID,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        template = await self.get(session, template_id)
        try:
            return self.render(template, data)
        except TemplateRenderError as exc:
            raise ValidationException(
                detail=str(exc),
                type="template-render-error",
                extra={"template": exc.template_name, "missing_variables": exc.missing_vars},
            ) from exc

    # ------------------------------------------------------------------
    # Defaults
    # ------------------------------------------------------------------

    async def set_default(self, session: AsyncSession, template_id: UUID) -> NotificationTemplate:
        """Make a template the only default of its tuple.

        The tuple rows are locked, every default flag is cleared with one
        UPDATE, then the target is flagged, all inside one savepoint of the
        caller's transaction.
        """
        template = await self.get(session, template_id)
        if not template.is_active:
            raise ConflictException(
                detail="Inactive templates cannot be the default",
                type="template-inactive",
                extra={"template_id": str(template_id)},
            )

        async with session.begin_nested():
            await self._repository.lock_tuple(session, template.kind, template.channel, template.locale)
            cleared = await self._repository.clear_defaults(
                session, template.kind, template.channel, template.locale
            )
            template.is_default = True
            await session.flush()

        await session.refresh(template)
        self.logger.info(
            "Template promoted to default",
            extra={
                "template_id": str(template.id),
                "kind": template.kind,
                "channel": template.channel,
                "locale": template.locale,
                "previous_defaults": cleared,
            },
        )
        return template

    async def delete(self, session: AsyncSession, template_id: UUID) -> None:
        """Delete a template, promoting a replacement first if it is the default.

        Raises:
            ConflictException: If it is the default and no other active template exists
        """
        template = await self.get(session, template_id)
        if template.is_default:
            replacement = await self._repository.find_replacement(session, template)
            if replacement is None:
                raise ConflictException(
                    detail="Cannot delete the only default template for this kind, channel and locale",
                    type="default-template-required",
                    extra={"template_id": str(template_id)},
                )
            await self.set_default(session, replacement.id)
        await self._repository.delete(session, template)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, template_id: UUID) -> NotificationTemplate:
        template = await self._repository.get(session, template_id)
        if template is None:
            raise NotFoundException(
                detail=f"Notification template {template_id} not found",
                type="template-not-found",
                extra={"template_id": str(template_id)},
            )
        return template

    async def get_by_name(self, session: AsyncSession, name: str) -> NotificationTemplate:
        template = await self._repository.get_by(session, NotificationTemplate.name, name)
        if template is None:
            raise NotFoundException(
                detail=f"Notification template {name!r} not found",
                type="template-not-found",
                extra={"name": name},
            )
        return template

    async def list_templates(
        self,
        session: AsyncSession,
        *,
        kind: str | None = None,
        channel: str | None = None,
        locale: str | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[NotificationTemplate]:
        return await self._repository.list_filtered(
            session,
            kind=kind,
            channel=channel,
            locale=locale,
            is_active=is_active,
            limit=limit,
            offset=offset,
        )

    async def create(self, session: AsyncSession, data: dict[str, Any]) -> NotificationTemplate:
        """Create a template; ``is_default`` goes through set_default."""
        self._validate(data)
        if await self._repository.get_by(session, NotificationTemplate.name, data["name"]):
            raise ConflictException(
                detail=f"Template name {data['name']!r} already exists",
                type="template-name-conflict",
                extra={"name": data["name"]},
            )

        template = NotificationTemplate(
            name=data["name"],
            kind=data["kind"],
            channel=data["channel"],
            locale=data.get("locale") or DEFAULT_LOCALE,
            content=data["content"],
            variables=list(data.get("variables") or []),
            description=data.get("description"),
            is_default=False,
            is_active=data.get("is_active", True),
        )
        template = await self._repository.create(session, template)
        if data.get("is_default"):
            template = await self.set_default(session, template.id)
        return template

    async def update(
        self,
        session: AsyncSession,
        template_id: UUID,
        data: dict[str, Any],
    ) -> NotificationTemplate:
        template = await self.get(session, template_id)
        if data.get("content") is not None:
            errors = validate_template_content(template.channel, data["content"])
            if errors:
                raise ValidationException(detail="Invalid template content", extra={"errors": errors})
        if data.get("name") and data["name"] != template.name:
            clash = await self._repository.get_by(session, NotificationTemplate.name, data["name"])
            if clash is not None:
                raise ConflictException(
                    detail=f"Template name {data['name']!r} already exists",
                    type="template-name-conflict",
                    extra={"name": data["name"]},
                )

        for field in _MUTABLE_FIELDS:
            if data.get(field) is not None:
                setattr(template, field, data[field])
        if template.is_default and not template.is_active:
            template.is_default = False
        template = await self._repository.save(session, template)

        if data.get("is_default") and not template.is_default:
            template = await self.set_default(session, template.id)
        return template

    async def create_defaults(
        self,
        session: AsyncSession,
        locale: str = DEFAULT_LOCALE,
    ) -> list[NotificationTemplate]:
        """Ensure a default template exists for every kind and channel."""
        created: list[NotificationTemplate] = []
        for kind in NotificationKind:
            for channel in ChannelType:
                existing = await self._repository.get_default(session, kind.value, channel.value, locale)
                if existing is None:
                    created.append(await self._create_fallback(session, kind.value, channel.value, locale))
        return created

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _create_fallback(
        self,
        session: AsyncSession,
        kind: str,
        channel: str,
        locale: str,
    ) -> NotificationTemplate:
        name = f"{kind}.{channel}.{locale}.default"
        existing = await self._repository.get_by(session, NotificationTemplate.name, name)
        if existing is not None and existing.is_active:
            return await self.set_default(session, existing.id)
        if existing is not None:
            name = f"{name}.{existing.id.hex[:8]}"

        template = NotificationTemplate(
            name=name,
            kind=kind,
            channel=channel,
            locale=locale,
            content=fallback_content(kind, channel),
            variables=[],
            description="Generated default template",
            is_default=False,
            is_active=True,
        )
        template = await self._repository.create(session, template)
        template = await self.set_default(session, template.id)
        self.logger.info(
            "Generated default template",
            extra={"template_id": str(template.id), "kind": kind, "channel": channel, "locale": locale},
        )
        return template

    @staticmethod
    def _validate(data: dict[str, Any]) -> None:
        errors: list[str] = []
        for field in ("name", "kind", "channel", "content"):
            if not data.get(field):
                errors.append(f"'{field}' is required")
        if data.get("kind") and not is_valid(NotificationKind, data["kind"]):
            errors.append(f"Invalid notification kind: {data['kind']}")
        if data.get("channel") and not is_valid(ChannelType, data["channel"]):
            errors.append(f"Invalid channel: {data['channel']}")
        if data.get("locale") and data["locale"] not in SUPPORTED_LOCALES:
            errors.append(f"Unsupported locale: {data['locale']}")
        if not errors and data.get("content"):
            errors.extend(validate_template_content(data["channel"], data["content"]))
        if errors:
            raise ValidationException(detail="Invalid template data", extra={"errors": errors})


_service: TemplateService | None = None


def get_template_service() -> TemplateService:
    """Get or create the singleton TemplateService instance."""
    global _service
    if _service is None:
        _service = TemplateService()
    return _service
