"""Language model oracle contract and tool-calling message types."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from throughline.utils.cancellation import CancellationToken


class ToolSchema(BaseModel):
    """A function the model may ask the caller to run."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ToolInvocation(BaseModel):
    """A function call requested by the model."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """One turn of a tool-augmented conversation.

    role "tool" carries the result of the invocation named by `name`;
    role "assistant" may carry the invocations the model requested.
    """

    role: Literal["user", "assistant", "tool"]
    content: str = ""
    name: Optional[str] = None
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)


class OracleReply(BaseModel):
    text: Optional[str] = None
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)


class LanguageModelOracle(ABC):
    """Text generation capability. Prompt in, text out."""

    cancellation: Optional[CancellationToken] = None

    def bind_cancellation(self, token: Optional[CancellationToken]) -> None:
        self.cancellation = token

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """
        Raises:
            OracleError: After the retry budget is exhausted, or immediately
                for a non-retryable failure such as a missing credential
        """
        pass

    @abstractmethod
    async def complete_with_tools(
        self, conversation: List[ChatMessage], tools: List[ToolSchema]
    ) -> OracleReply:
        pass
