"""
Draft Generation Workflow

A LangGraph workflow that turns a structured deal context into a scored draft:
- Drafting via the injected completion service (generate or refine prompt)
- Confidence scoring and reasoning derivation
- Optional fact-check pass that adjusts confidence

Flow: drafter -> analyzer -> (validator)
"""
import logging
import re
from datetime import datetime, timezone
from typing import TypedDict

from langgraph.graph import StateGraph, END

from draftdesk.core.tracing import redact_pii
from draftdesk.drafts.context_builder import build_email_prompt, build_refinement_prompt
from draftdesk.drafts.errors import GenerationFailedError
from draftdesk.drafts.models import (
    GeneratedDraft,
    GenerationMetadata,
    Reasoning,
    StructuredContext,
    ValidationResult,
)
from draftdesk.drafts.reasoning import analyze_email_draft, apply_validation, calculate_confidence
from draftdesk.drafts.validator import DraftValidator
from draftdesk.integrations.completion_service import CompletionRequest, CompletionService

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def _system_prompt(agent_name: str, agent_company: str) -> str:
    return (
        f"You are {agent_name}, a professional and enthusiastic real estate agent at {agent_company}. "
        "Write helpful, accurate email responses based on specific property data. When clients ask "
        "questions, answer them directly and positively. Use the exact data provided - do not make "
        "assumptions or add information not in the data. Be warm, professional, and solution-oriented."
    )


def _refinement_system_prompt(agent_name: str, agent_company: str) -> str:
    return (
        f"You are {agent_name}, a professional and enthusiastic real estate agent at {agent_company}. "
        "You are refining an email draft based on user feedback. Preserve the good parts of the "
        "previous draft while incorporating the requested changes. Be warm, professional, and "
        "solution-oriented."
    )


def clean_model_output(text: str) -> str:
    """Strip markdown code fences the model sometimes wraps the body in."""
    return _CODE_FENCE_RE.sub("", text.strip()).strip()


class DraftGenerationState(TypedDict):
    """State for the draft generation workflow."""
    # Input
    context: StructuredContext
    system_prompt: str
    prompt: str

    # Drafter output
    body: str | None
    model: str | None
    tokens_used: int

    # Analysis
    confidence: int | None
    reasoning: Reasoning | None
    validation: ValidationResult | None


class DraftGenerator:
    """Generates and refines drafts. Collaborators are injected, nothing is global."""

    def __init__(
        self,
        completion: CompletionService,
        validator: DraftValidator | None = None,
        agent_name: str = "Alex",
        agent_company: str = "Tandem",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ):
        self.completion = completion
        self.validator = validator
        self.agent_name = agent_name
        self.agent_company = agent_company
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.graph = self._build_graph().compile()

    # Nodes

    async def drafter_node(self, state: DraftGenerationState) -> DraftGenerationState:
        """Call the model; empty output or any model error aborts the run."""
        logger.info(
            "Generating draft",
            extra={
                "space_count": len(state["context"].spaces),
                "prompt_preview": redact_pii(state["prompt"], 50),
            }
        )

        try:
            result = await self.completion.complete(CompletionRequest(
                system=state["system_prompt"],
                prompt=state["prompt"],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            ))
        except Exception as e:
            logger.error(f"Language model call failed: {e}")
            raise GenerationFailedError(f"Failed to generate email draft: {e}") from e

        body = clean_model_output(result.text)
        if not body:
            raise GenerationFailedError("Failed to generate email draft: model returned an empty response")

        logger.info(f"Generated draft with {len(body)} characters")

        return {
            **state,
            "body": body,
            "model": result.model,
            "tokens_used": result.tokens_used,
        }

    async def analyzer_node(self, state: DraftGenerationState) -> DraftGenerationState:
        context = state["context"]
        body = state["body"]

        confidence = calculate_confidence(body, context.spaces, self.agent_name)
        reasoning = analyze_email_draft(body, context)

        logger.info(
            "Analyzed draft",
            extra={
                "confidence": confidence,
                "sources": len(reasoning.data_used),
                "questions_addressed": len(reasoning.questions_addressed),
            }
        )

        return {
            **state,
            "confidence": confidence,
            "reasoning": reasoning,
        }

    async def validator_node(self, state: DraftGenerationState) -> DraftGenerationState:
        validation = await self.validator.validate(state["body"], state["context"])
        reasoning = state["reasoning"].model_copy(update={"validation": validation})

        return {
            **state,
            "confidence": apply_validation(state["confidence"], validation),
            "reasoning": reasoning,
            "validation": validation,
        }

    def should_validate(self, state: DraftGenerationState) -> str:
        return "validate" if self.validator is not None else "skip"

    def _build_graph(self) -> StateGraph:
        """
        Flow:
            drafter -> analyzer -> (validator configured?) -> validator/END
        """
        workflow = StateGraph(DraftGenerationState)

        workflow.add_node("drafter", self.drafter_node)
        workflow.add_node("analyzer", self.analyzer_node)
        workflow.add_node("validator", self.validator_node)

        workflow.set_entry_point("drafter")
        workflow.add_edge("drafter", "analyzer")
        workflow.add_conditional_edges(
            "analyzer",
            self.should_validate,
            {
                "validate": "validator",
                "skip": END,
            }
        )
        workflow.add_edge("validator", END)

        return workflow

    # Entry points

    async def _run(self, context: StructuredContext, system_prompt: str, prompt: str) -> GeneratedDraft:
        state = await self.graph.ainvoke({
            "context": context,
            "system_prompt": system_prompt,
            "prompt": prompt,
            "body": None,
            "model": None,
            "tokens_used": 0,
            "confidence": None,
            "reasoning": None,
            "validation": None,
        })

        validation = state["validation"]
        return GeneratedDraft(
            body=state["body"],
            confidence=state["confidence"],
            reasoning=state["reasoning"],
            metadata=GenerationMetadata(
                model=state["model"],
                tokens_used=state["tokens_used"],
                generated_at=datetime.now(timezone.utc),
                validation_tokens_used=validation.tokens_used if validation else None,
            ),
            validation=validation,
        )

    async def generate(self, context: StructuredContext) -> GeneratedDraft:
        """Write a fresh reply to the inbound email."""
        return await self._run(
            context,
            _system_prompt(self.agent_name, self.agent_company),
            build_email_prompt(context, self.agent_name, self.agent_company),
        )

    async def refine(
        self,
        context: StructuredContext,
        previous_body: str,
        instruction: str,
        previous_version: int,
    ) -> GeneratedDraft:
        """Rewrite the current draft per a broker instruction, keeping prior answers."""
        return await self._run(
            context,
            _refinement_system_prompt(self.agent_name, self.agent_company),
            build_refinement_prompt(
                context,
                previous_body,
                instruction,
                previous_version,
                self.agent_name,
                self.agent_company,
            ),
        )
