"""Gemini-backed language model oracle."""
import asyncio
from typing import List, Optional

from google import genai
from google.genai import types

from throughline.llm.base import (
    ChatMessage,
    LanguageModelOracle,
    OracleReply,
    ToolInvocation,
    ToolSchema,
)
from throughline.utils.cancellation import check_cancelled
from throughline.utils.config import settings
from throughline.utils.errors import MissingCredentialError, OracleError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_MARKERS = ("429", "500", "502", "503", "504", "UNAVAILABLE", "RESOURCE_EXHAUSTED")


def _is_retryable(error: Exception) -> bool:
    """Overload, rate limit, server and transport errors are worth retrying."""
    code = getattr(error, "code", None)
    if isinstance(code, int) and (code == 429 or code >= 500):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    error_str = str(error)
    return any(marker in error_str for marker in RETRYABLE_MARKERS)


class GeminiOracle(LanguageModelOracle):
    """Calls Gemini with a small fixed-backoff retry budget."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.temperature = temperature if temperature is not None else settings.gemini_temperature
        self.max_output_tokens = max_output_tokens or settings.gemini_max_output_tokens
        self.max_attempts = max_attempts or settings.oracle_max_attempts
        self.retry_delay = retry_delay if retry_delay is not None else settings.oracle_retry_delay
        self._client: Optional[genai.Client] = None

    @property
    def client(self) -> genai.Client:
        if not self.api_key:
            raise MissingCredentialError(
                "Gemini API key not set. Provide GEMINI_API_KEY in the environment or .env"
            )
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, contents, config: types.GenerateContentConfig):
        """
        Call Gemini, retrying transient failures with a fixed delay.

        Raises:
            MissingCredentialError: Without an API key (never retried)
            OracleError: On a non-retryable error or once attempts run out
        """
        client = self.client
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            await check_cancelled(self.cancellation)
            try:
                response = await client.aio.models.generate_content(
                    model=self.model, contents=contents, config=config
                )
                if response is not None and (response.text or response.function_calls):
                    return response
                last_error = OracleError("Gemini returned empty response")
            except Exception as e:
                if not _is_retryable(e):
                    logger.error(f"Gemini API error: {e}")
                    raise OracleError(f"Gemini API error: {e}") from e
                last_error = e

            if attempt < self.max_attempts:
                logger.warning(
                    f"LLM call attempt {attempt} failed ({last_error}), "
                    f"retrying in {self.retry_delay}s..."
                )
                await asyncio.sleep(self.retry_delay)
                await check_cancelled(self.cancellation)

        raise OracleError(f"LLM call failed after {self.max_attempts} attempts: {last_error}")

    def _config(self, tools: Optional[List[ToolSchema]] = None) -> types.GenerateContentConfig:
        kwargs = dict(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )
        if tools:
            kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description,
                            parameters_json_schema=t.parameters,
                        )
                        for t in tools
                    ]
                )
            ]
            # the caller runs the tools and feeds results back
            kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(
                disable=True
            )
        return types.GenerateContentConfig(**kwargs)

    async def complete(self, prompt: str) -> str:
        logger.debug(f"callLLM called with prompt length: {len(prompt)}")
        response = await self._generate(prompt, self._config())
        text = response.text or ""
        logger.debug(f"Gemini responded ({len(text)} chars)")
        return text

    @staticmethod
    def _to_contents(conversation: List[ChatMessage]) -> List[types.Content]:
        contents = []
        for message in conversation:
            if message.role == "user":
                contents.append(
                    types.Content(role="user", parts=[types.Part.from_text(text=message.content)])
                )
            elif message.role == "assistant":
                parts = []
                if message.content:
                    parts.append(types.Part.from_text(text=message.content))
                for call in message.tool_invocations:
                    parts.append(types.Part.from_function_call(name=call.name, args=call.arguments))
                contents.append(types.Content(role="model", parts=parts))
            else:
                contents.append(
                    types.Content(
                        role="user",
                        parts=[
                            types.Part.from_function_response(
                                name=message.name or "tool",
                                response={"result": message.content},
                            )
                        ],
                    )
                )
        return contents

    async def complete_with_tools(
        self, conversation: List[ChatMessage], tools: List[ToolSchema]
    ) -> OracleReply:
        response = await self._generate(self._to_contents(conversation), self._config(tools))
        invocations = [
            ToolInvocation(name=call.name, arguments=dict(call.args or {}))
            for call in (response.function_calls or [])
        ]
        return OracleReply(text=response.text, tool_invocations=invocations)
