"""Live round-trip check against the sanctioned LLM runtime."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from worksheet_intake.config import RuntimeSettings

logger = logging.getLogger(__name__)

PROBE_PROMPT = "Reply with OK only."
PROBE_MAX_OUTPUT_TOKENS = 16


class ConnectivityError(RuntimeError):
    """Runtime credential or endpoint is not usable."""


class ConnectivityProbe(Protocol):
    """Protocol implemented by runtime connectivity checks."""

    def verify(self) -> None:
        """Raise ConnectivityError when the runtime cannot answer."""


class DisabledConnectivityProbe:
    """Probe used when connectivity verification is switched off."""

    def verify(self) -> None:
        logger.info("Runtime connectivity verification disabled")


class ResponsesApiProbe:
    """Sends one minimal request to the Responses API and expects `OK` back."""

    def __init__(
        self,
        settings: RuntimeSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    def verify(self) -> None:
        if not self.settings.api_key:
            raise ConnectivityError(
                "OPENAI_API_KEY missing; cannot verify "
                f"{self.settings.model} runtime integration",
            )

        url = f"{self.settings.base_url.rstrip('/')}/responses"
        payload = {
            "model": self.settings.model,
            "input": [{"role": "user", "content": PROBE_PROMPT}],
            "max_output_tokens": PROBE_MAX_OUTPUT_TOKENS,
        }
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}
        try:
            with httpx.Client(
                timeout=httpx.Timeout(self.settings.timeout_seconds, connect=10.0),
                transport=self._transport,
            ) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as error:
            raise ConnectivityError(
                f"Runtime connectivity check request timed out: {error}",
            ) from error
        except httpx.HTTPError as error:
            raise ConnectivityError(f"Runtime connectivity check failed: {error}") from error

        if not response.is_success:
            raise ConnectivityError(
                f"Runtime connectivity check failed for {self.settings.model}: "
                f"HTTP {response.status_code} {response.text[:200]}",
            )
        try:
            body = response.json()
        except ValueError as error:
            raise ConnectivityError("Runtime connectivity check returned non-JSON body") from error

        text = extract_response_text(body).upper()
        if "OK" not in text:
            raise ConnectivityError(f"Runtime connectivity check failed for {self.settings.model}")
        logger.info("Runtime connectivity verified for %s", self.settings.model)


def build_connectivity_probe(settings: RuntimeSettings) -> ConnectivityProbe:
    if not settings.verify_connectivity:
        return DisabledConnectivityProbe()
    return ResponsesApiProbe(settings)


def extract_response_text(body: Any) -> str:
    """Collect reply text from a Responses API payload."""

    if not isinstance(body, dict):
        return ""
    output_text = body.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()
    if isinstance(output_text, list):
        joined = "\n".join(chunk for chunk in output_text if isinstance(chunk, str)).strip()
        if joined:
            return joined

    output = body.get("output")
    if not isinstance(output, list):
        return ""
    chunks: list[str] = []
    for item in output:
        if not isinstance(item, dict) or not isinstance(item.get("content"), list):
            continue
        for content in item["content"]:
            if isinstance(content, dict) and isinstance(content.get("text"), str):
                chunks.append(content["text"])
    return "\n".join(chunks).strip()
