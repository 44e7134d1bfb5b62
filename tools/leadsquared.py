import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx
from loguru import logger

from config import Settings
from tools.errors import ConfigurationError, DownstreamError, LeadError


@dataclass
class DispatchSuccess:
    response: Any
    duplicate: bool


@dataclass
class DispatchFailure:
    error: LeadError


DispatchOutcome = Union[DispatchSuccess, DispatchFailure]

# Characters encodeURIComponent leaves as-is
URI_COMPONENT_SAFE = "!~*'()"


def is_duplicate(response: Any) -> bool:
    """Whether a LeadSquared response reports the lead as already existing."""
    if not isinstance(response, dict):
        return False
    return bool(
        response.get("duplicate")
        or response.get("status") == "duplicate"
        or response.get("errorCode") == "DUPLICATE"
    )


def describe_error(error: Exception) -> str:
    """
    Build a one-line description of a failed CRM call.

    Combines the HTTP status (with reason phrase) and the most useful message
    found in the response body, falling back to the error's own message.
    """
    status = reason = body = None
    if isinstance(error, DownstreamError):
        status, reason, body = error.status, error.reason, error.body

    status_part = ""
    if status:
        status_part = f"HTTP {status}" + (f" {reason}" if reason else "")

    message_part = ""
    if isinstance(body, str):
        message_part = body
    elif isinstance(body, dict) and body.get("Message"):
        message_part = str(body["Message"])
    elif isinstance(body, dict) and body.get("message"):
        message_part = str(body["message"])
    elif str(error):
        message_part = str(error)

    return " - ".join(part for part in (status_part, message_part) if part) or "Unknown error"


def error_message(error: LeadError) -> str:
    """Message returned to the caller for a failed submission."""
    body = error.body if isinstance(error, DownstreamError) else None
    # empty containers still count as a body, an empty string does not
    if isinstance(body, (dict, list)) or body:
        return body if isinstance(body, str) else json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    return error.message or "Unknown error"


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class LeadSquaredClient:
    """LeadSquared CRM lead-creation client."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.leadsquared_base_url
        self.endpoint = settings.leadsquared_endpoint
        self.access_key = settings.leadsquared_access_key
        self.secret_key = settings.leadsquared_secret_key
        self._transport = transport

        if not self.endpoint and not (self.base_url and self.access_key and self.secret_key):
            logger.warning("LeadSquared is not fully configured, lead submissions will fail")

    def resolve_url(self) -> str:
        """
        Resolve the Lead.Create URL.

        Returns:
            The explicit endpoint when configured, otherwise the URL built from
            the base URL and the access/secret keys.

        Raises:
            ConfigurationError: base URL or keys are missing.
        """
        if self.endpoint:
            return self.endpoint

        base = self.base_url[:-1] if self.base_url.endswith("/") else self.base_url
        if not base:
            raise ConfigurationError("LeadSquared base URL is not configured")

        if not self.access_key or not self.secret_key:
            raise ConfigurationError("LeadSquared keys are not configured")

        return (
            f"{base}/v2/LeadManagement.svc/Lead.Create"
            f"?accessKey={quote(self.access_key, safe=URI_COMPONENT_SAFE)}"
            f"&secretKey={quote(self.secret_key, safe=URI_COMPONENT_SAFE)}"
        )

    async def create_lead(self, payload: List[Dict[str, str]]) -> DispatchOutcome:
        """
        Create a lead in LeadSquared. Single attempt, never raises.

        Args:
            payload: CRM attribute list

        Returns:
            DispatchSuccess with the raw response, or DispatchFailure
        """
        try:
            url = self.resolve_url()
        except ConfigurationError as e:
            logger.error(f"LeadSquared configuration error: {e}")
            return DispatchFailure(e)

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"LeadSquared request failed: {e}")
            return DispatchFailure(DownstreamError(str(e) or type(e).__name__))

        body = _decode_body(response)
        if not response.is_success:
            error = DownstreamError(
                f"Request failed with status code {response.status_code}",
                status=response.status_code,
                reason=response.reason_phrase,
                body=body,
            )
            logger.error(f"LeadSquared submission failed: {describe_error(error)}")
            if response.status_code == 412:
                logger.error("LeadSquared returned 412 Precondition Failed, usually invalid field names or format")
            return DispatchFailure(error)

        duplicate = is_duplicate(body)
        logger.info(f"LeadSquared lead created (duplicate={duplicate})")
        return DispatchSuccess(response=body, duplicate=duplicate)
