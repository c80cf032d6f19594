"""
Anthropic Messages API adapter for text generation.

Text generations complete inside the submit call, so submit() returns a
terminal ProviderStatus and the orchestrator reconciles it without polling.
"""

import logging
from typing import Optional, Tuple

from pydantic import BaseModel

from . import config
from .errors import InvalidWebhook, ProviderRejected
from .providers import (
    GenerationKind,
    GenerationRequest,
    JobStatus,
    ProviderAdapter,
    ProviderName,
    ProviderStatus,
    Submission,
)

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeContentBlock(BaseModel):
    type: str
    text: Optional[str] = None


class ClaudeMessage(BaseModel):
    id: str
    content: list[ClaudeContentBlock] = []
    stop_reason: Optional[str] = None


class ClaudeTextAdapter(ProviderAdapter):
    name = ProviderName.ANTHROPIC
    kind = GenerationKind.TEXT
    api_provider = "claude_text"
    default_timeout = 120.0

    def __init__(self, api_key: str = "", client=None, model: str = "", api_url: str = ANTHROPIC_API_URL):
        super().__init__(api_key or config.ANTHROPIC_API_KEY, client)
        self.model = model or config.ANTHROPIC_MODEL
        self.api_url = api_url

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def create_message(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024, model: Optional[str] = None) -> ClaudeMessage:
        body = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        logger.info(f"Calling Claude ({body['model']}, max_tokens={max_tokens})")
        response = self._request("POST", self.api_url, json=body)
        return self._decode(response, ClaudeMessage)

    def complete(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        """Return the text of the first content block, or raise ProviderRejected."""
        message = self.create_message(system_prompt, user_prompt, max_tokens)
        text = _message_text(message)
        if not text:
            raise ProviderRejected(f"Empty response content from Claude (message {message.id})")
        return text

    def submit(self, request: GenerationRequest) -> Submission:
        message = self.create_message(
            request.system_prompt or "",
            request.prompt,
            request.max_tokens,
            model=request.model,
        )
        text = _message_text(message)
        if text:
            status = ProviderStatus(state=JobStatus.COMPLETED, result_text=text)
        else:
            status = ProviderStatus(state=JobStatus.FAILED, failure_reason="Empty response content from Claude")
        return Submission(
            external_request_id=message.id,
            status=status,
            model=request.model or self.model,
        )

    def fetch_status(self, external_request_id: str, model: Optional[str] = None) -> ProviderStatus:
        raise ProviderRejected("Claude messages complete synchronously and cannot be polled")

    def parse_webhook(self, body: dict) -> Tuple[str, ProviderStatus]:
        raise InvalidWebhook("Anthropic does not deliver webhooks")


def _message_text(message: ClaudeMessage) -> str:
    for block in message.content:
        if block.type == "text" and block.text:
            return block.text.strip()
    return ""
