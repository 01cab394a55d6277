"""Mail transport delivering notification emails via SendGrid."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.config import get_settings
from app.domain.errors import PermanentChannelError, TransientChannelError

logger = logging.getLogger(__name__)

_ADDRESS_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# HTTP statuses worth retrying: throttling and server side trouble.
_RETRYABLE_STATUS_CODES = frozenset({408, 429})


def _extract_sendgrid_error_details(body: Any) -> str | None:
    """Return a human readable description for a SendGrid error payload."""

    if body in (None, ""):
        return None

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if isinstance(body, str):
        body = body.strip()
        if not body:
            return None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return body
    else:
        parsed = body

    if isinstance(parsed, dict):
        errors = parsed.get("errors")
        if isinstance(errors, list):
            messages: list[str] = []
            for item in errors:
                if not isinstance(item, dict):
                    continue
                message = item.get("message")
                field = item.get("field")
                if message and field:
                    messages.append(f"{message} (field: {field})")
                elif message:
                    messages.append(str(message))
            if messages:
                return "; ".join(messages)
        try:
            return json.dumps(parsed)
        except (TypeError, ValueError):
            return None

    if isinstance(parsed, list):
        return "; ".join(str(item) for item in parsed)

    return None


def is_valid_address(address: str | None) -> bool:
    """Return ``True`` when ``address`` looks like a deliverable email address."""

    return bool(address) and bool(_ADDRESS_PATTERN.match(address.strip()))


def _describe_failure(status_code: int | None, body: Any, fallback: str) -> str:
    details = _extract_sendgrid_error_details(body)
    if status_code and details:
        return f"SendGrid responded with status {status_code}: {details}"
    if status_code:
        return f"SendGrid responded with status {status_code}"
    if details:
        return f"SendGrid request failed: {details}"
    return fallback


def _classify_status(status_code: int, reason: str) -> Exception:
    if status_code in _RETRYABLE_STATUS_CODES or status_code >= 500:
        return TransientChannelError(reason)
    return PermanentChannelError(reason)


class SendGridMailTransport:
    """Hand off rendered emails to SendGrid, one request per message.

    ``deliver`` returns on acceptance and raises :class:`TransientChannelError`
    or :class:`PermanentChannelError` otherwise.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        sender: str | None = None,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.sendgrid_api_key
        self._sender = sender if sender is not None else settings.sendgrid_sender
        self._client_factory = client_factory

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._sender)

    def deliver(self, address: str, subject: str, body: str) -> None:
        if not self.configured:
            raise PermanentChannelError("SendGrid configuration incomplete; email disabled")
        if not is_valid_address(address):
            raise PermanentChannelError(f"Invalid recipient address: {address!r}")

        message = Mail(
            from_email=self._sender,
            to_emails=address.strip(),
            subject=subject,
            html_content=body,
        )

        factory = self._client_factory or SendGridAPIClient
        try:
            client = factory(self._api_key)
            response = client.send(message)
        except Exception as exc:
            status_code = getattr(exc, "status_code", None)
            reason = _describe_failure(
                status_code, getattr(exc, "body", None), f"Error sending email via SendGrid: {exc}"
            )
            logger.error(reason)
            if isinstance(status_code, int):
                raise _classify_status(status_code, reason) from exc
            # No HTTP status means the request never completed (DNS, socket, timeout).
            raise TransientChannelError(reason) from exc

        status_code = getattr(response, "status_code", None)
        if isinstance(status_code, int) and 200 <= status_code < 300:
            logger.info("Email accepted by SendGrid for %s", address)
            return

        reason = _describe_failure(
            status_code, getattr(response, "body", None), "SendGrid returned no status code"
        )
        logger.error(reason)
        if isinstance(status_code, int):
            raise _classify_status(status_code, reason)
        raise TransientChannelError(reason)


__all__ = ["SendGridMailTransport", "is_valid_address"]
