"""
Pydantic request/response models.

Rationale:
- Define simple, explicit input/output contracts for the API.
- Wire names are camelCase (what the frontend sends); Python attributes stay snake_case via aliases.
- Request fields are optional at the model level so the endpoints can answer "missing field" with their own error shapes.
"""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

TemplateValue = Union[bool, int, float, str]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateRequest(CamelModel):
    template_id: Optional[str] = Field(None, alias="templateId")
    input: Optional[Dict[str, TemplateValue]] = None


class Usage(CamelModel):
    prompt_tokens: int = Field(alias="promptTokens")
    completion_tokens: int = Field(alias="completionTokens")
    total_tokens: int = Field(alias="totalTokens")


class GenerateResponse(CamelModel):
    content: str
    model: str
    usage: Optional[Usage] = None


class TemplateInfo(CamelModel):
    id: str
    name: str
    description: str
    variables: List[str]


class TemplatesResponse(BaseModel):
    templates: List[TemplateInfo]


class MarketAnalysisRequest(CamelModel):
    project_description: Optional[str] = Field(None, alias="projectDescription")


class SummaryRequest(CamelModel):
    analysis_content: Optional[str] = Field(None, alias="analysisContent")


class SummaryResponse(BaseModel):
    summary: str


class ChartDataRequest(CamelModel):
    content: Optional[str] = None
    min_items: Optional[int] = Field(None, alias="minItems", ge=1)
    max_items: Optional[int] = Field(None, alias="maxItems", ge=1)


class ChartDataResponse(CamelModel):
    chart_data: Dict[str, Any] = Field(alias="chartData")
