"""
Market analysis orchestration / pipeline.

Flow (sequential, one request at a time through this function):
1. Narrative call: search-grounded Gemini generation of an HTML market analysis
   a. strip code fences
   b. remove model meta-commentary (text + HTML aware)
   c. append a Sources section built from grounding chunks if the model did not write one
2. Chart call: schema-instructed structured output -> sanitized chart data
   (any failure -> fixed fallback dataset)
3. Optional summary call: 1-2 paragraph summary without tools
   (any failure -> first <p> of the narrative -> "No summary available.")
4. Derive a markdown mirror of the HTML and return the merged result

Only a narrative failure fails the request.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .chart_data import (
    build_content_chart_prompt,
    generate_chart_data,
    get_chart_data_schema,
)
from .content_processing import (
    append_sources_section,
    clean_summary_text,
    extract_first_paragraph,
    html_to_markdown,
    process_market_analysis_content,
    strip_code_fences,
)
from .gemini_client import (
    GeminiClient,
    GroundingChunk,
    extract_grounding_metadata,
    extract_text,
)
from .prompts import (
    CHART_DATA_PROMPT_TEMPLATE,
    MARKET_ANALYSIS_PROMPT_TEMPLATE,
    SUMMARY_PROMPT_TEMPLATE,
)

logger = logging.getLogger(__name__)

# Configuration from environment
MARKET_ANALYSIS_TEMPERATURE = float(os.getenv("MARKET_ANALYSIS_TEMPERATURE", "0.7"))
SUMMARY_TEMPERATURE = float(os.getenv("SUMMARY_TEMPERATURE", "0.5"))
INCLUDE_SUMMARY = os.getenv("MARKET_ANALYSIS_INCLUDE_SUMMARY", "true").strip().lower() in ("1", "true", "yes")


class AnalysisState(str, Enum):
    PENDING = "PENDING"
    NARRATIVE_GENERATING = "NARRATIVE_GENERATING"
    CHART_GENERATING = "CHART_GENERATING"
    SUMMARY_GENERATING = "SUMMARY_GENERATING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


_TRANSITIONS = {
    AnalysisState.PENDING: {AnalysisState.NARRATIVE_GENERATING},
    AnalysisState.NARRATIVE_GENERATING: {AnalysisState.CHART_GENERATING, AnalysisState.FAILED},
    AnalysisState.CHART_GENERATING: {AnalysisState.SUMMARY_GENERATING, AnalysisState.COMPLETE},
    AnalysisState.SUMMARY_GENERATING: {AnalysisState.COMPLETE},
    AnalysisState.COMPLETE: set(),
    AnalysisState.FAILED: set(),
}


@dataclass
class AnalysisRun:
    """Per-request state tracker; never shared between requests."""

    state: AnalysisState = AnalysisState.PENDING
    history: List[AnalysisState] = field(default_factory=lambda: [AnalysisState.PENDING])

    @property
    def is_terminal(self) -> bool:
        return self.state in (AnalysisState.COMPLETE, AnalysisState.FAILED)

    def advance(self, new_state: AnalysisState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal market analysis transition {self.state.value} -> {new_state.value}")
        logger.info("market_analysis.state from=%s to=%s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)


class MarketAnalysisError(RuntimeError):
    """Narrative generation failed; the whole analysis request fails."""


@dataclass
class MarketAnalysisResult:
    content: str
    html_content: str
    is_grounded: bool
    search_suggestions: List[str]
    rendered_content: Optional[str]
    grounding_chunks: Optional[List[GroundingChunk]] = None
    chart_data: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "content": self.content,
            "htmlContent": self.html_content,
            "isGrounded": self.is_grounded,
            "searchSuggestions": list(self.search_suggestions),
            "renderedContent": self.rendered_content,
        }
        if self.grounding_chunks is not None:
            payload["groundingChunks"] = [c.to_dict() for c in self.grounding_chunks]
        if self.chart_data is not None:
            payload["chartData"] = self.chart_data
        if self.summary is not None:
            payload["summary"] = self.summary
        return payload


class MarketAnalysisGenerator:
    def __init__(self, client: GeminiClient, include_summary: bool = INCLUDE_SUMMARY):
        self.client = client
        self.include_summary = include_summary

    def is_available(self) -> bool:
        return self.client.is_available()

    def generate(self, project_description: str, run: Optional[AnalysisRun] = None) -> MarketAnalysisResult:
        """
        Full analysis for one project description.

        Args:
            project_description: Free-text product/project idea
            run: Optional tracker the caller can inspect afterwards

        Raises:
            MarketAnalysisError: narrative generation failed
        """
        run = run or AnalysisRun()
        logger.info(
            "market_analysis.start description_chars=%d include_summary=%s",
            len(project_description),
            self.include_summary,
        )

        run.advance(AnalysisState.NARRATIVE_GENERATING)
        try:
            narrative = self._generate_narrative(project_description)
        except Exception as e:
            run.advance(AnalysisState.FAILED)
            logger.error("market_analysis.narrative_failed err=%s", str(e)[:200], exc_info=True)
            raise MarketAnalysisError(f"Market analysis generation failed: {e}") from e

        run.advance(AnalysisState.CHART_GENERATING)
        prompt = CHART_DATA_PROMPT_TEMPLATE.format(project_description=project_description)
        narrative.chart_data = generate_chart_data(self.client, prompt)

        if self.include_summary:
            run.advance(AnalysisState.SUMMARY_GENERATING)
            narrative.summary = self.summarize(narrative.html_content)

        run.advance(AnalysisState.COMPLETE)
        logger.info(
            "market_analysis.complete grounded=%s sources=%d charts=%s",
            narrative.is_grounded,
            len(narrative.grounding_chunks or []),
            ",".join(sorted((narrative.chart_data or {}).keys())),
        )
        return narrative

    def _generate_narrative(self, project_description: str) -> MarketAnalysisResult:
        prompt = MARKET_ANALYSIS_PROMPT_TEMPLATE.format(project_description=project_description)
        response = self.client.generate_with_search(prompt, temperature=MARKET_ANALYSIS_TEMPERATURE)

        content = strip_code_fences(extract_text(response))
        content = process_market_analysis_content(content, fmt="html")

        grounding = extract_grounding_metadata(response)
        html_content = append_sources_section(content, grounding)

        return MarketAnalysisResult(
            content=html_to_markdown(html_content),
            html_content=html_content,
            is_grounded=grounding is not None,
            search_suggestions=list(grounding.web_search_queries) if grounding else [],
            rendered_content=grounding.rendered_content if grounding else None,
            grounding_chunks=list(grounding.grounding_chunks) if grounding else None,
        )

    def generate_summary(self, analysis_content: str) -> str:
        """Raw summary call; raises on provider failure or empty output."""
        prompt = SUMMARY_PROMPT_TEMPLATE.format(analysis_content=analysis_content)
        response = self.client.generate_without_tools(prompt, temperature=SUMMARY_TEMPERATURE)
        summary = clean_summary_text(extract_text(response))
        if not summary:
            raise RuntimeError("Gemini returned an empty summary")
        return summary

    def summarize(self, analysis_content: str) -> str:
        """Summary that never fails: model summary, else first paragraph, else placeholder."""
        try:
            return self.generate_summary(analysis_content)
        except Exception as e:
            logger.warning("market_analysis.summary_fallback err=%s", str(e)[:200], exc_info=True)
            return extract_first_paragraph(analysis_content)

    def chart_data_for_content(
        self,
        content: str,
        min_items: Optional[int] = None,
        max_items: Optional[int] = None,
    ) -> Dict[str, Any]:
        schema = get_chart_data_schema(min_items=min_items, max_items=max_items)
        return generate_chart_data(self.client, build_content_chart_prompt(content), schema)
