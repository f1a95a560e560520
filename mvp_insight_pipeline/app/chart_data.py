"""
Chart data schema, sanitization and fallback for market analysis visualizations.

Rationale:
- Chart data is non-critical: any generation or parse failure degrades to a fixed dataset instead of failing the request.
- sanitize_chart_data never raises; it maps whatever the model produced onto the three chart shapes.
- Units for bar rows are guessed from the metric name (best effort, no confidence signal).
"""

import copy
import json
import logging
import math
from typing import Any, Dict, List, Optional

from .content_processing import strip_code_fences
from .gemini_client import extract_text

logger = logging.getLogger(__name__)

CHART_KEYS = ("pieChart", "areaChart", "barChart")

CHART_DATA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "pieChart": {
            "type": "array",
            "description": (
                "Market share distribution data using actual percentages from reliable sources. "
                "Values must sum to 100%."
            ),
            "items": {
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Company or segment name (e.g., 'Microsoft', 'Cloud Services', 'Others')",
                    },
                    "value": {"type": "number", "description": "Market share percentage (0-100)"},
                    "unit": {"type": "string", "description": "Unit for the value (e.g., '%')"},
                },
                "required": ["name", "value"],
            },
            "minItems": 3,
            "maxItems": 8,
        },
        "areaChart": {
            "type": "array",
            "description": (
                "Market growth over time. Each item is a time period (e.g., year) in chronological order "
                "with the market size for that period."
            ),
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Time period label, e.g. 'YYYY'"},
                    "value": {"type": "number", "description": "Market size for the period"},
                    "unit": {"type": "string", "description": "Unit for the value (e.g., 'B USD', 'M users')"},
                },
                "required": ["name", "value"],
            },
            "minItems": 4,
            "maxItems": 10,
        },
        "barChart": {
            "type": "array",
            "description": (
                "Comparison of actual metrics (revenue, users, etc.) across companies or segments. "
                "Do not include project values."
            ),
            "items": {
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Metric and company/segment (e.g., 'Revenue - Microsoft')",
                    },
                    "value": {"type": "number", "description": "Primary metric value"},
                    "unit": {"type": "string", "description": "Unit for the value (e.g., 'B USD', 'M users', '%')"},
                    "secondaryValue": {"type": "number", "description": "Optional secondary metric value"},
                    "secondaryUnit": {"type": "string", "description": "Unit for the secondary value"},
                },
                "required": ["name", "value"],
            },
            "minItems": 3,
            "maxItems": 8,
        },
    },
    "required": ["pieChart", "areaChart", "barChart"],
}

_FALLBACK_CHART_DATA: Dict[str, List[Dict[str, Any]]] = {
    "pieChart": [
        {"name": "Market Leader", "value": 35},
        {"name": "Competitor A", "value": 25},
        {"name": "Competitor B", "value": 20},
        {"name": "Others", "value": 20},
    ],
    "areaChart": [
        {"name": "2019", "value": 1200000},
        {"name": "2020", "value": 1100000},
        {"name": "2021", "value": 1500000},
        {"name": "2022", "value": 2200000},
        {"name": "2023", "value": 3100000},
    ],
    "barChart": [
        {"name": "Revenue", "value": 4800000, "secondaryValue": 3000000, "unit": "$"},
        {"name": "Market Share", "value": 35, "secondaryValue": 25, "unit": "%"},
        {"name": "Growth Rate", "value": 28, "secondaryValue": 15, "unit": "%"},
        {"name": "Customer Base", "value": 520000, "secondaryValue": 380000, "unit": "users"},
    ],
}

# Checked in order; first hit wins
_UNIT_KEYWORDS = (
    (("revenue", "sales"), "$"),
    (("share", "growth"), "%"),
    (("users", "customers"), "users"),
)


def get_chart_data_schema(min_items: Optional[int] = None, max_items: Optional[int] = None) -> Dict[str, Any]:
    """Deep copy of CHART_DATA_SCHEMA with item-count bounds overridden for every chart."""
    schema = copy.deepcopy(CHART_DATA_SCHEMA)
    for key in CHART_KEYS:
        if min_items:
            schema["properties"][key]["minItems"] = min_items
        if max_items:
            schema["properties"][key]["maxItems"] = max_items
    return schema


def get_fallback_chart_data() -> Dict[str, List[Dict[str, Any]]]:
    return copy.deepcopy(_FALLBACK_CHART_DATA)


def infer_unit(name: str) -> str:
    lowered = (name or "").lower()
    for keywords, unit in _UNIT_KEYWORDS:
        if any(k in lowered for k in keywords):
            return unit
    return ""


def _coerce_number(value: Any) -> Optional[float]:
    # bool is an int subclass; a true/false "value" is not a measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _name(item: Dict[str, Any], default: str) -> str:
    name = item.get("name")
    if name is None or name == "":
        return default
    return str(name)


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _sanitize_series(items: List[Any], default_name: str) -> List[Dict[str, Any]]:
    out = []
    for item in items:
        if not isinstance(item, dict):
            item = {}
        value = _coerce_number(item.get("value"))
        row: Dict[str, Any] = {
            "name": _name(item, default_name),
            "value": value if value is not None else 0,
        }
        unit = _optional_str(item.get("unit"))
        if unit:
            row["unit"] = unit
        out.append(row)
    return out


def _sanitize_bar_rows(items: List[Any]) -> List[Dict[str, Any]]:
    out = []
    for item in items:
        if not isinstance(item, dict):
            item = {}
        name = _name(item, "Unknown")
        value = _coerce_number(item.get("value"))
        row: Dict[str, Any] = {"name": name, "value": value if value is not None else 0}

        unit = infer_unit(name) or _optional_str(item.get("unit"))
        if unit:
            row["unit"] = unit
        secondary = _coerce_number(item.get("secondaryValue"))
        if secondary is not None:
            row["secondaryValue"] = secondary
        secondary_unit = _optional_str(item.get("secondaryUnit"))
        if secondary_unit:
            row["secondaryUnit"] = secondary_unit
        out.append(row)
    return out


def sanitize_chart_data(raw: Any) -> Dict[str, List[Dict[str, Any]]]:
    """
    Map an arbitrary parsed object onto the ChartData shape.

    - non-numeric value -> 0
    - missing name -> "Other" (pie) / "Unknown" (area, bar)
    - absent or empty arrays -> key omitted
    """
    sanitized: Dict[str, List[Dict[str, Any]]] = {}
    if not isinstance(raw, dict):
        return sanitized

    pie = raw.get("pieChart")
    if isinstance(pie, list) and pie:
        sanitized["pieChart"] = _sanitize_series(pie, "Other")

    area = raw.get("areaChart")
    if isinstance(area, list) and area:
        sanitized["areaChart"] = _sanitize_series(area, "Unknown")

    bar = raw.get("barChart")
    if isinstance(bar, list) and bar:
        sanitized["barChart"] = _sanitize_bar_rows(bar)

    return sanitized


def extract_json_object(text: str) -> Any:
    """
    Parse the first valid JSON object in model output.
    Handles markdown code fences and prose around the object; a brace span that
    does not parse (e.g. "{pieChart, ...}" in a preamble) is skipped.
    """
    text = strip_code_fences(text or "")

    start = text.find("{")
    if start == -1:
        raise json.JSONDecodeError("No JSON object found", text, 0)

    while True:
        try:
            return _parse_object_at(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            if start == -1:
                raise


def _parse_object_at(text: str, start: int) -> Any:
    # Count braces to find the matching closing brace, skipping string contents
    depth = 0
    in_string = False
    i = start
    end = -1
    while i < len(text):
        char = text[i]
        if in_string:
            if char == "\\" and i + 1 < len(text):
                i += 2
                continue
            elif char == '"':
                in_string = False
        else:
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        i += 1

    if end == -1:
        raise json.JSONDecodeError("Unmatched braces in JSON", text, start)

    return json.loads(text[start:end + 1])


def parse_chart_data(text: str) -> Dict[str, List[Dict[str, Any]]]:
    """Parse and sanitize structured-output text; ValueError when no chart survives."""
    parsed = extract_json_object(text)
    sanitized = sanitize_chart_data(parsed)
    if not sanitized:
        raise ValueError("Chart data response contained no usable charts")
    return sanitized


def build_content_chart_prompt(content: str) -> str:
    return (
        "Analyze the following market information and generate chart data for visualization.\n"
        "Create data for pie charts showing market share distribution, area charts showing trends over time,\n"
        "and bar charts comparing key metrics.\n\n"
        "Use realistic values based on the content. Ensure all data points have descriptive names\n"
        "and numeric values. Avoid using 'undefined' or generic labels.\n\n"
        f"Content to analyze:\n{content}"
    )


def generate_chart_data(client: Any, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    One structured-output call turned into sanitized chart data.

    Any failure (provider error, empty/unparseable text, no usable charts) is logged and
    answered with get_fallback_chart_data().
    """
    try:
        response = client.generate_with_structured_output(prompt, schema or CHART_DATA_SCHEMA)
        text = extract_text(response)
        chart_data = parse_chart_data(text)
    except Exception as e:
        logger.warning("chart_data.fallback reason=%s", str(e)[:200], exc_info=True)
        return get_fallback_chart_data()

    logger.info(
        "chart_data.generated %s",
        " ".join(f"{k}={len(v)}" for k, v in chart_data.items()),
    )
    return chart_data
