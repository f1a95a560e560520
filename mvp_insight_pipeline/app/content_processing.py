"""
Post-processing for LLM-generated market analysis content.

Rationale:
- Models wrap HTML in code fences and append "here is what I did" commentary; none of that is for end users.
- Every cleanup is an ordered tuple of named regex rules applied one after another, so each rule can be tested alone.
- These are best-effort textual filters judged against known model phrasings, not HTML/markdown parsers.
"""

import html
import logging
import re
from typing import NamedTuple, Optional, Sequence

from .gemini_client import GroundingMetadata

logger = logging.getLogger(__name__)

NO_SUMMARY_AVAILABLE = "<p>No summary available.</p>"


class TextRule(NamedTuple):
    name: str
    pattern: "re.Pattern[str]"
    replacement: str = ""


def apply_rules(content: str, rules: Sequence[TextRule]) -> str:
    """Apply rules in order; each rule sees the output of the previous one."""
    for rule in rules:
        content = rule.pattern.sub(rule.replacement, content)
    return content


def _until_paragraph_end(trigger: str) -> "re.Pattern[str]":
    return re.compile(trigger + r"[\s\S]*?(?=\n\n|\Z)")


def _until_end(trigger: str) -> "re.Pattern[str]":
    return re.compile(trigger + r"[\s\S]*\Z")


CODE_FENCE_RULES = (
    TextRule("opening_fence", re.compile(r"```(\w+)?\n")),
    TextRule("closing_fence", re.compile(r"```\n?")),
)

META_EXPLANATION_RULES = (
    TextRule("key_improvements", _until_end(r"Key improvements and explanations:")),
    TextRule("bold_label_bullets", re.compile(r"\*\s*\*\*[\w\s]+:\*\*\s*[\s\S]*?(?=\*\s*\*\*|\Z)")),
    TextRule("placeholder_reminder", re.compile(r"\*[^*]*placeholder[^*]*\*", re.IGNORECASE)),
    TextRule("remember_to_replace", _until_paragraph_end(r"Remember to replace")),
    TextRule("you_would_need_to", _until_paragraph_end(r"You would need to")),
    TextRule("a_simple_way_to", _until_paragraph_end(r"A simple way to")),
    TextRule("opening_the_html", _until_paragraph_end(r"Simply opening the HTML")),
    TextRule("improved_response", _until_paragraph_end(r"This improved response provides")),
    TextRule("ive_structured", _until_paragraph_end(r"I[’']ve structured the")),
    TextRule("ive_designed", _until_paragraph_end(r"I[’']ve designed this")),
    TextRule("ive_added", _until_paragraph_end(r"I[’']ve added")),
    TextRule("ive_included", _until_paragraph_end(r"I[’']ve included")),
    TextRule("ive_implemented", _until_paragraph_end(r"I[’']ve implemented")),
    TextRule("tailwind_classes", _until_paragraph_end(r"The Tailwind CSS classes")),
    TextRule("using_tailwind", _until_paragraph_end(r"Using Tailwind CSS")),
    TextRule("note_trailer", _until_end(r"Note:")),
    TextRule("additional_notes", _until_end(r"Additional notes:")),
    TextRule("blank_lines", re.compile(r"\n{3,}"), "\n\n"),
)

HTML_META_RULES = (
    TextRule("html_comments", re.compile(r"<!--[\s\S]*?-->")),
    TextRule("script_blocks", re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)),
    TextRule("style_blocks", re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)),
    TextRule(
        "trailing_note_paragraph",
        re.compile(r"<p[^>]*>(?:Note:|Additional notes:|Remember to)[\s\S]*?</p>\s*\Z", re.IGNORECASE),
    ),
    TextRule(
        "explanation_div",
        re.compile(r"<div[^>]*class=\"[^\"]*explanation[^\"]*\"[^>]*>[\s\S]*?</div>", re.IGNORECASE),
    ),
    TextRule("note_div", re.compile(r"<div[^>]*class=\"[^\"]*note[^\"]*\"[^>]*>[\s\S]*?</div>", re.IGNORECASE)),
    TextRule(
        "explanation_id",
        re.compile(r"<[^>]*id=\"[^\"]*explanation[^\"]*\"[^>]*>[\s\S]*?</[^>]*>", re.IGNORECASE),
    ),
    TextRule("note_id", re.compile(r"<[^>]*id=\"[^\"]*note[^\"]*\"[^>]*>[\s\S]*?</[^>]*>", re.IGNORECASE)),
)

HTML_TO_MARKDOWN_RULES = (
    TextRule("h1", re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE), r"# \1\n\n"),
    TextRule("h2", re.compile(r"<h2[^>]*>(.*?)</h2>", re.IGNORECASE), r"## \1\n\n"),
    TextRule("h3", re.compile(r"<h3[^>]*>(.*?)</h3>", re.IGNORECASE), r"### \1\n\n"),
    TextRule("paragraph", re.compile(r"<p[^>]*>(.*?)</p>", re.IGNORECASE), r"\1\n\n"),
    TextRule("unordered_list", re.compile(r"<ul[^>]*>(.*?)</ul>", re.IGNORECASE), r"\1\n"),
    TextRule("list_item", re.compile(r"<li[^>]*>(.*?)</li>", re.IGNORECASE), r"- \1\n"),
    TextRule("superscript", re.compile(r"<sup>(.*?)</sup>", re.IGNORECASE), r"^\1"),
    TextRule("link", re.compile(r"<a[^>]*href=\"([^\"]*)\"[^>]*>(.*?)</a>", re.IGNORECASE), r"[\2](\1)"),
    TextRule("any_tag", re.compile(r"<[^>]*>")),
)

SUMMARY_MARKDOWN_RULES = (
    TextRule("headings", re.compile(r"^#+ ", re.MULTILINE)),
    TextRule("bold", re.compile(r"\*\*")),
    TextRule("italics", re.compile(r"\*")),
)

_SOURCES_HEADING_RE = re.compile(r"<h[1-6][^>]*>\s*(?:\d+\.\s*)?(?:Sources|References)\b", re.IGNORECASE)
_FIRST_PARAGRAPH_RE = re.compile(r"<p[^>]*>.*?</p>", re.IGNORECASE | re.DOTALL)


def looks_like_html(content: str) -> bool:
    return any(tag in content for tag in ("<html", "<body", "<div", "<h1", "<p"))


def strip_code_fences(content: str) -> str:
    """Remove ``` fences (with optional language tag) around model output."""
    if not content:
        return ""
    return apply_rules(content, CODE_FENCE_RULES).strip()


def remove_meta_explanations(content: str) -> str:
    """
    Strip known "explaining my work" phrasings a model appends to its answer.

    Rules are re-applied until nothing changes, since one deletion can join text into
    a trigger of an earlier rule. Idempotent on its own output.
    """
    if not content:
        return ""
    # rules only delete or shrink, so this reaches a fixed point
    while True:
        cleaned = apply_rules(content, META_EXPLANATION_RULES).strip()
        if cleaned == content:
            return cleaned
        content = cleaned


def clean_html_meta_explanations(content: str) -> str:
    """HTML-aware cleanup: comments, script/style, explanation/note elements. Non-HTML passes through."""
    if not content:
        return ""
    if not looks_like_html(content):
        return content
    return apply_rules(content, HTML_META_RULES)


def process_market_analysis_content(content: str, fmt: str = "html") -> str:
    if not content:
        return ""
    content = remove_meta_explanations(content)
    if fmt == "html":
        content = clean_html_meta_explanations(content)
    return content


def html_to_markdown(content: str) -> str:
    """Lossy tag-substitution conversion; content without h1/h2/p tags is returned unchanged."""
    if not content:
        return ""
    if not any(tag in content for tag in ("<h1", "<h2", "<p")):
        return content
    markdown = apply_rules(content, HTML_TO_MARKDOWN_RULES)
    return re.sub(r"\n{3,}", "\n\n", markdown).strip()


def has_sources_heading(content: str) -> bool:
    return bool(_SOURCES_HEADING_RE.search(content or ""))


def append_sources_section(content: str, grounding: Optional[GroundingMetadata]) -> str:
    """Append a numbered list of grounding sources unless the content already has a sources heading."""
    if grounding is None or not grounding.grounding_chunks:
        return content
    if has_sources_heading(content):
        return content

    items = "\n".join(
        '<li class="text-sm text-gray-700 dark:text-gray-300">'
        f'<a href="{html.escape(chunk.uri, quote=True)}" target="_blank" rel="noopener noreferrer" '
        f'class="text-primary hover:underline">{html.escape(chunk.title)}</a></li>'
        for chunk in grounding.grounding_chunks
    )
    logger.debug("content.sources_appended count=%d", len(grounding.grounding_chunks))
    return (
        f"{content}\n"
        '<h2 class="text-xl font-semibold mt-8 mb-4 text-primary">Sources</h2>\n'
        f'<ol class="list-decimal pl-5 space-y-2">\n{items}\n</ol>'
    )


def extract_first_paragraph(content: str) -> str:
    """First <p>…</p> element of the content, or a fixed placeholder paragraph."""
    match = _FIRST_PARAGRAPH_RE.search(content or "")
    if match:
        return match.group(0)
    return NO_SUMMARY_AVAILABLE


def clean_summary_text(text: str) -> str:
    return apply_rules(text or "", SUMMARY_MARKDOWN_RULES).strip()
