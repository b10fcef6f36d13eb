import logging
from typing import Protocol, Sequence

import anthropic

import config
from errors import OracleUnavailable
from models import ConversationTurn

logger = logging.getLogger(__name__)


class Oracle(Protocol):
    async def classify(
        self, system_prompt: str, history: Sequence[ConversationTurn], utterance: str
    ) -> str: ...


def to_api_messages(history: Sequence[ConversationTurn], utterance: str) -> list[dict]:
    """
    Convert the forwarded history window plus the new utterance to Messages API format.
    The API expects the conversation to open with a user turn.
    """
    window = list(history)[-config.ORACLE_HISTORY_WINDOW:]
    while window and window[0].role != "user":
        window.pop(0)
    messages = [{"role": turn.role, "content": turn.content} for turn in window]
    messages.append({"role": "user", "content": utterance})
    return messages


class AnthropicOracle:
    """
    Single seam to the language model.

    One request per utterance: the SDK's automatic retries are disabled so a
    flaky network never bills the same turn twice.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
    ):
        self.api_key = api_key if api_key is not None else config.ANTHROPIC_API_KEY
        self.model = model or config.ANTHROPIC_MODEL
        self.timeout = timeout or config.ORACLE_TIMEOUT_SECONDS
        self.max_tokens = max_tokens or config.ORACLE_MAX_TOKENS
        self._client = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def classify(
        self, system_prompt: str, history: Sequence[ConversationTurn], utterance: str
    ) -> str:
        if not config.api_key_configured(self.api_key):
            logger.error("ANTHROPIC_API_KEY not configured")
            raise OracleUnavailable()

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=to_api_messages(history, utterance),
            )
        except anthropic.APITimeoutError as e:
            logger.warning("Oracle call timed out after %.0fs", self.timeout)
            raise OracleUnavailable() from e
        except anthropic.APIError as e:
            logger.warning("Oracle call failed: %s", e)
            raise OracleUnavailable() from e

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        if not text.strip():
            logger.warning("Oracle returned an empty reply")
            raise OracleUnavailable()

        logger.debug("Oracle response: %s", text)
        return text
