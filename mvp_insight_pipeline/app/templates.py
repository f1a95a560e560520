"""
Prompt template registry and resolver.

Rationale:
- Templates are a small static catalogue defined at import time; nothing registers at runtime.
- Resolution is pure: look up by id, check the declared variables, substitute.
- Substitution is a single regex pass, so a value containing "{{other}}" is never re-expanded.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

TemplateValue = Union[str, int, float, bool]
TemplateInput = Mapping[str, TemplateValue]

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


class PromptErrorCode(str, Enum):
    MISSING_VARIABLE = "MISSING_VARIABLE"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"


class PromptError(Exception):
    """Template lookup/validation failure, reported to callers as a 400."""

    def __init__(
        self,
        message: str,
        code: PromptErrorCode,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code.value,
            "details": self.details,
        }


@dataclass(frozen=True)
class PromptTemplate:
    id: str
    name: str
    description: str
    system_message: str
    user_template: str
    variables: Tuple[str, ...]


@dataclass(frozen=True)
class FilledPrompt:
    system_message: str
    user_message: str


MISSION_STATEMENT_SYSTEM = """\
You are an expert product strategist helping entrepreneurs define their MVP. Your role is to analyze the product idea and provide a structured response in HTML format. If user asks about anything else apart from the product development, just say "I don't know".

IMPORTANT: Output the HTML directly without any markdown code block markers (do not use ```html or ```).

Follow these guidelines:
1. Use semantic HTML elements
2. Include proper heading hierarchy
3. Use lists for better organization
4. Keep the content concise and actionable

Your output should follow this structure (output this directly, not in a code block):
<article>
  <section class="mission">
    <h3>Mission Statement</h3>
    <p>[2-3 sentences that capture what the product does, who it serves, the problem it solves, and what makes it unique]</p>
  </section>

  <section class="mvp-strategy">
    <h3>MVP Strategy</h3>

    <div class="core-features">
      <h4>Core Features</h4>
      <ul>
        <li>[Feature 1]</li>
        <li>[Feature 2]</li>
        <li>[Feature 3]</li>
      </ul>
    </div>

    <div class="technical-requirements">
      <h4>Technical Requirements</h4>
      <ul>
        <li>[Requirement 1]</li>
        <li>[Requirement 2]</li>
      </ul>
    </div>

    <div class="target-users">
      <h4>Target Users</h4>
      <ul>
        <li>[User Type 1]</li>
        <li>[User Type 2]</li>
      </ul>
    </div>

    <div class="success-metrics">
      <h4>Key Success Metrics</h4>
      <ul>
        <li>[Metric 1]</li>
        <li>[Metric 2]</li>
      </ul>
    </div>
  </section>
</article>

Keep the tone professional but inspiring, and ensure all suggestions are actionable and focused on rapid validation."""

MISSION_STATEMENT_USER = """\
Based on this product idea:

{{productIdea}}

Provide a structured HTML response with:
1. A compelling mission statement
2. A focused MVP strategy including core features, technical requirements, target users, and key metrics"""

PRODUCT_DESCRIPTION_SYSTEM = """\
You are a skilled product copywriter who creates compelling, benefit-focused product descriptions. Follow these principles:
- Lead with the most compelling benefit
- Use vivid, descriptive language
- Highlight unique selling points
- Include specific features and their benefits
- Maintain the brand's tone of voice"""

PRODUCT_DESCRIPTION_USER = """\
Write a product description for {{productName}}, a {{category}} product.
Key details to include:
- Main benefit: {{mainBenefit}}
- Key features: {{features}}
- Target user: {{targetUser}}
- Price point: {{pricePoint}}
- Brand tone: {{brandTone}}"""


TEMPLATES: Tuple[PromptTemplate, ...] = (
    PromptTemplate(
        id="mission-statement",
        name="MVP Mission Statement Generator",
        description="Creates a focused mission statement and MVP strategy based on your product idea",
        system_message=MISSION_STATEMENT_SYSTEM,
        user_template=MISSION_STATEMENT_USER,
        variables=("productIdea",),
    ),
    PromptTemplate(
        id="product-description",
        name="Product Description Generator",
        description="Creates engaging product descriptions with key features and benefits",
        system_message=PRODUCT_DESCRIPTION_SYSTEM,
        user_template=PRODUCT_DESCRIPTION_USER,
        variables=(
            "productName",
            "category",
            "mainBenefit",
            "features",
            "targetUser",
            "pricePoint",
            "brandTone",
        ),
    ),
)


def list_templates() -> Tuple[PromptTemplate, ...]:
    return TEMPLATES


def get_template_by_id(template_id: str) -> PromptTemplate:
    for template in TEMPLATES:
        if template.id == template_id:
            return template
    raise PromptError(
        f"Template with id '{template_id}' not found",
        PromptErrorCode.TEMPLATE_NOT_FOUND,
        {"templateId": template_id},
    )


def validate_template_input(template: PromptTemplate, input_: TemplateInput) -> None:
    """Raise MISSING_VARIABLE listing undeclared-in-input variables in declared order."""
    missing: List[str] = [v for v in template.variables if v not in input_]
    if missing:
        raise PromptError(
            f"Missing required variables: {', '.join(missing)}",
            PromptErrorCode.MISSING_VARIABLE,
            {"templateId": template.id, "missingVariables": missing},
        )


def _stringify(value: TemplateValue) -> str:
    # JSON spelling, so a boolean reads the same as it was sent
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def fill_template(template: PromptTemplate, input_: TemplateInput) -> FilledPrompt:
    """
    Validate input and substitute every declared {{variable}} in the user template.

    Undeclared placeholders are left as-is and extra input keys are ignored.
    """
    validate_template_input(template, input_)
    declared = set(template.variables)

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in declared:
            return _stringify(input_[name])
        return match.group(0)

    user_message = _PLACEHOLDER_RE.sub(_replace, template.user_template)
    logger.debug(
        "template.filled template_id=%s variables=%d length=%d",
        template.id,
        len(template.variables),
        len(user_message),
    )
    return FilledPrompt(system_message=template.system_message, user_message=user_message)
