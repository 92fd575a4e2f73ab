"""Language-model completion service.

The draft engine depends on the ``CompletionService`` protocol only; the
OpenAI implementation is built once at startup and injected, so tests can
swap in a fake without patching module globals.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from opentelemetry.trace import Status, StatusCode

from draftdesk.core.tracing import get_tracer, safe_span_attributes

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass
class CompletionRequest:
    system: str
    prompt: str
    temperature: float = 0.7
    max_tokens: int = 1000


@dataclass
class CompletionResult:
    text: str
    tokens_used: int
    model: str


class CompletionService(Protocol):
    async def complete(self, request: CompletionRequest) -> CompletionResult:
        ...


class OpenAICompletionService:
    """Chat completions through langchain-openai."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.api_key = api_key
        self.model = model

    def _llm(self, request: CompletionRequest) -> ChatOpenAI:
        return ChatOpenAI(
            model=self.model,
            api_key=self.api_key,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        with tracer.start_as_current_span("llm.complete") as span:
            span.set_attributes(safe_span_attributes(
                model=self.model,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                prompt=request.prompt,
            ))

            try:
                response = await self._llm(request).ainvoke([
                    SystemMessage(content=request.system),
                    HumanMessage(content=request.prompt),
                ])
            except Exception as e:
                logger.error(
                    "OpenAI completion failed",
                    extra={"model": self.model, "error_type": type(e).__name__}
                )
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise

            text = response.content if isinstance(response.content, str) else ""
            usage = response.usage_metadata or {}
            tokens_used = usage.get("total_tokens", 0)
            model = response.response_metadata.get("model_name", self.model)

            span.set_attribute("tokens_used", tokens_used)
            span.set_status(Status(StatusCode.OK))

            logger.info(
                "OpenAI completion finished",
                extra={"model": model, "tokens_used": tokens_used, "chars": len(text)}
            )

            return CompletionResult(text=text.strip(), tokens_used=tokens_used, model=model)
