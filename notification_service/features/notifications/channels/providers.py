"""Outbound delivery providers.

Console providers log instead of sending and are the defaults for local
development. SendGrid, Twilio and FCM adapters call the provider HTTP APIs
with httpx.

Usage:
    provider = build_email_provider(get_notification_settings())
    result = await provider.send({"subject": "Hi", "text": "..."}, "user@example.com")
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from notification_service.features.notifications.channels.base import ProviderResult

if TYPE_CHECKING:
    from notification_service.core.settings.notifications import NotificationSettings

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT = 30.0


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        if "errors" in body and isinstance(body["errors"], list):
            return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in body["errors"])
        if "message" in body:
            return str(body["message"])
    return response.text


# =============================================================================
# Console providers
# =============================================================================


class ConsoleEmailProvider:
    """Logs emails instead of sending them. Always reports SENT."""

    provider_name = "console"

    def __init__(self, from_address: str) -> None:
        self._from_address = from_address

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        message_id = f"console-{uuid.uuid4()}"
        logger.info(
            "EMAIL (console)",
            extra={
                "message_id": message_id,
                "from": self._from_address,
                "to": recipient,
                "subject": message.get("subject"),
                "text": message.get("text"),
            },
        )
        return ProviderResult(status="sent", provider_message_id=message_id)


class ConsoleSmsProvider:
    """Logs SMS messages instead of sending them."""

    provider_name = "console"

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        message_id = f"console-{uuid.uuid4()}"
        logger.info(
            "SMS (console)",
            extra={"message_id": message_id, "to": recipient, "text": message.get("text")},
        )
        return ProviderResult(status="sent", provider_message_id=message_id)


class ConsolePushProvider:
    """Logs push messages instead of sending them."""

    provider_name = "console"

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        message_id = f"console-{uuid.uuid4()}"
        logger.info(
            "PUSH (console)",
            extra={"message_id": message_id, "token": recipient, "title": message.get("title")},
        )
        return ProviderResult(status="sent", provider_message_id=message_id)

    async def send_to_topic(self, message: dict[str, Any], topic: str) -> ProviderResult:
        message_id = f"console-{uuid.uuid4()}"
        logger.info(
            "PUSH topic (console)",
            extra={"message_id": message_id, "topic": topic, "title": message.get("title")},
        )
        return ProviderResult(status="sent", provider_message_id=message_id)


# =============================================================================
# HTTP providers
# =============================================================================


class SendGridEmailProvider:
    """SendGrid API v3 email provider.

    SendGrid answers 202 when it accepts a message, which maps to SENT;
    delivery confirmation arrives later through its event webhook.
    """

    provider_name = "sendgrid"
    API_BASE_URL = "https://api.sendgrid.com/v3"
    SEND_ENDPOINT = "/mail/send"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SendGrid provider requires api_key")
        self._api_key = api_key
        self._from_address = from_address
        self._from_name = from_name
        self._client = client

    def _build_payload(self, message: dict[str, Any], recipient: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self._from_address},
            "subject": message.get("subject", ""),
        }
        if self._from_name:
            payload["from"]["name"] = self._from_name

        content: list[dict[str, str]] = []
        if message.get("text"):
            content.append({"type": "text/plain", "value": message["text"]})
        if message.get("html"):
            content.append({"type": "text/html", "value": message["html"]})
        payload["content"] = content
        return payload

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        payload = self._build_payload(message, recipient)
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        url = f"{self.API_BASE_URL}{self.SEND_ENDPOINT}"

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=_HTTP_TIMEOUT)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=payload, headers=headers, timeout=_HTTP_TIMEOUT)
        except httpx.TimeoutException:
            return ProviderResult.failed("SendGrid request timed out")
        except httpx.HTTPError as e:
            return ProviderResult.failed(f"SendGrid HTTP error: {e}")

        if response.status_code == 202:
            return ProviderResult(
                status="sent",
                provider_message_id=response.headers.get("X-Message-Id"),
            )
        return ProviderResult.failed(f"SendGrid API error ({response.status_code}): {_error_text(response)}")


class TwilioSmsProvider:
    """Twilio Programmable Messaging provider."""

    provider_name = "twilio"
    API_BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not (account_sid and auth_token and from_number):
            raise ValueError("Twilio provider requires account_sid, auth_token and from_number")
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._client = client

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        url = f"{self.API_BASE_URL}/Accounts/{self._account_sid}/Messages.json"
        form = {"To": recipient, "From": self._from_number, "Body": message.get("text", "")}
        auth = (self._account_sid, self._auth_token)

        try:
            if self._client is not None:
                response = await self._client.post(url, data=form, auth=auth, timeout=_HTTP_TIMEOUT)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, data=form, auth=auth, timeout=_HTTP_TIMEOUT)
        except httpx.TimeoutException:
            return ProviderResult.failed("Twilio request timed out")
        except httpx.HTTPError as e:
            return ProviderResult.failed(f"Twilio HTTP error: {e}")

        if response.status_code in (200, 201):
            body = response.json()
            if body.get("status") in ("failed", "undelivered"):
                return ProviderResult.failed(body.get("error_message") or f"Twilio status {body['status']}")
            status = "delivered" if body.get("status") == "delivered" else "sent"
            return ProviderResult(status=status, provider_message_id=body.get("sid"))
        return ProviderResult.failed(f"Twilio API error ({response.status_code}): {_error_text(response)}")


class FcmPushProvider:
    """Firebase Cloud Messaging provider (legacy HTTP API)."""

    provider_name = "fcm"
    SEND_URL = "https://fcm.googleapis.com/fcm/send"

    def __init__(self, server_key: str, client: httpx.AsyncClient | None = None) -> None:
        if not server_key:
            raise ValueError("FCM provider requires server_key")
        self._server_key = server_key
        self._client = client

    def _build_payload(self, message: dict[str, Any], target: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "to": target,
            "notification": {"title": message.get("title", ""), "body": message.get("body", "")},
        }
        if message.get("data"):
            payload["data"] = {k: str(v) for k, v in message["data"].items()}
        return payload

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"key={self._server_key}", "Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(self.SEND_URL, json=payload, headers=headers, timeout=_HTTP_TIMEOUT)
        async with httpx.AsyncClient() as client:
            return await client.post(self.SEND_URL, json=payload, headers=headers, timeout=_HTTP_TIMEOUT)

    async def send(self, message: dict[str, Any], recipient: str) -> ProviderResult:
        try:
            response = await self._post(self._build_payload(message, recipient))
        except httpx.TimeoutException:
            return ProviderResult.failed("FCM request timed out")
        except httpx.HTTPError as e:
            return ProviderResult.failed(f"FCM HTTP error: {e}")

        if response.status_code != 200:
            return ProviderResult.failed(f"FCM API error ({response.status_code}): {_error_text(response)}")

        body = response.json()
        results = body.get("results") or [{}]
        first = results[0]
        if body.get("success", 0) >= 1 and "message_id" in first:
            return ProviderResult(status="sent", provider_message_id=first["message_id"])
        return ProviderResult.failed(first.get("error", "FCM rejected the token"))

    async def send_to_topic(self, message: dict[str, Any], topic: str) -> ProviderResult:
        try:
            response = await self._post(self._build_payload(message, f"/topics/{topic}"))
        except httpx.TimeoutException:
            return ProviderResult.failed("FCM request timed out")
        except httpx.HTTPError as e:
            return ProviderResult.failed(f"FCM HTTP error: {e}")

        if response.status_code != 200:
            return ProviderResult.failed(f"FCM API error ({response.status_code}): {_error_text(response)}")
        body = response.json()
        if "message_id" in body:
            return ProviderResult(status="sent", provider_message_id=str(body["message_id"]))
        return ProviderResult.failed(body.get("error", "FCM rejected the topic message"))


# =============================================================================
# Factories
# =============================================================================


def build_email_provider(settings: NotificationSettings) -> ConsoleEmailProvider | SendGridEmailProvider:
    if settings.email_provider == "sendgrid":
        api_key = settings.sendgrid_api_key.get_secret_value() if settings.sendgrid_api_key else ""
        return SendGridEmailProvider(api_key, settings.email_from_address, settings.email_from_name)
    return ConsoleEmailProvider(settings.email_from_address)


def build_sms_provider(settings: NotificationSettings) -> ConsoleSmsProvider | TwilioSmsProvider:
    if settings.sms_provider == "twilio":
        return TwilioSmsProvider(
            settings.twilio_account_sid or "",
            settings.twilio_auth_token.get_secret_value() if settings.twilio_auth_token else "",
            settings.twilio_from_number or "",
        )
    return ConsoleSmsProvider()


def build_push_provider(settings: NotificationSettings) -> ConsolePushProvider | FcmPushProvider:
    if settings.push_provider == "fcm":
        return FcmPushProvider(settings.fcm_server_key.get_secret_value() if settings.fcm_server_key else "")
    return ConsolePushProvider()
