import logging
from typing import Any, List, Optional

from fastapi import Request
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from .config import Settings
from .errors import UpstreamError
from .schemas import ChatMessageIn, ChatReply, ChatStatus

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI assistant for an analytics dashboard. Help users understand "
    "their data, provide insights, and answer questions about analytics, charts, "
    "and business intelligence. Be concise and helpful."
)
FALLBACK_REPLY = "Sorry, I could not generate a response."


def convert_to_lc_messages(messages: List[ChatMessageIn]) -> List[BaseMessage]:
    """Convert request messages into LangChain chat messages, system prompt first."""
    converted: List[BaseMessage] = [SystemMessage(content=SYSTEM_PROMPT)]
    for message in messages:
        if message.role == "user":
            converted.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(SystemMessage(content=message.content))
    return converted


def _translate_upstream_error(exc: Exception) -> UpstreamError:
    code = getattr(exc, "code", None)
    if code == "insufficient_quota":
        return UpstreamError(
            "AI service quota exceeded. Please try again later.", status_code=402
        )
    if code == "rate_limit_exceeded" or type(exc).__name__ == "RateLimitError":
        return UpstreamError(
            "AI service rate limit exceeded. Please slow down your requests.",
            status_code=429,
        )
    return UpstreamError("Unable to generate a response right now.", status_code=500)


class ChatService:
    """Chat-completion pass-through, built once at application startup."""

    def __init__(self, llm: Optional[BaseChatModel], model_name: str) -> None:
        self._llm = llm
        self.model_name = model_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatService":
        if not settings.openai_api_key:
            logger.warning(
                "OPENAI_API_KEY is missing. Chat endpoints will answer 503 "
                "until it is configured."
            )
            return cls(None, settings.openai_model)

        llm = ChatOpenAI(
            model=settings.openai_model,
            openai_api_key=settings.openai_api_key,
            openai_api_base=settings.openai_api_base,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        )
        return cls(llm, settings.openai_model)

    @property
    def available(self) -> bool:
        return self._llm is not None

    def status(self) -> ChatStatus:
        return ChatStatus(
            available=self.available,
            model=self.model_name,
            features={
                "streaming": False,
                "nonStreaming": self.available,
                "history": False,
            },
        )

    async def complete(self, messages: List[ChatMessageIn]) -> ChatReply:
        if self._llm is None:
            raise UpstreamError(
                "AI service is not available. Please configure OpenAI API key.",
                status_code=503,
            )

        try:
            result = await self._llm.ainvoke(convert_to_lc_messages(messages))
        except Exception as exc:
            logger.exception("Chat completion failed")
            raise _translate_upstream_error(exc) from exc

        content: Any = getattr(result, "content", "")
        if not isinstance(content, str):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )
        usage = getattr(result, "usage_metadata", None)
        return ChatReply(
            message=content or FALLBACK_REPLY,
            model=self.model_name,
            usage=dict(usage) if usage else None,
        )


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service
