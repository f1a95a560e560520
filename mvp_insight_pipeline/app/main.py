"""
FastAPI entrypoint.

Routes:
- GET  /api/templates                   template catalogue
- POST /api/generate                    fill a template and run one completion
- POST /api/market-analysis             narrative + chart data (+ summary)
- POST /api/market-analysis-summary     short summary of an existing analysis
- POST /api/market-analysis/chart-data  chart data for arbitrary market content

Services are built once at import and kept on app.state; endpoints reach them
through dependencies so tests can swap them with app.dependency_overrides.
"""

import os
import logging
from dotenv import load_dotenv, find_dotenv

# Load environment variables from .env file (optional).
# In Render (and other hosts), secrets should be provided via environment variables, not committed .env files.
# For local Windows dev, some editors save .env as UTF-16; support both UTF-8 and UTF-16 gracefully.
_dotenv_path = find_dotenv(usecwd=True) or None
if _dotenv_path:
    try:
        load_dotenv(_dotenv_path)
    except UnicodeError:
        load_dotenv(_dotenv_path, encoding="utf-16")
else:
    # No .env found; rely on process env
    load_dotenv()

# Configure logging with environment-based level
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)
logger.info("Pipeline starting with LOG_LEVEL=%s", LOG_LEVEL)

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .gemini_client import GeminiClient
from .llm_client import LLMEngine, LLMError, LLMOptions, create_default_adapter
from .market_analysis import MarketAnalysisError, MarketAnalysisGenerator
from .schemas import (
    ChartDataRequest,
    ChartDataResponse,
    GenerateRequest,
    GenerateResponse,
    MarketAnalysisRequest,
    SummaryRequest,
    SummaryResponse,
    TemplatesResponse,
)
from .templates import PromptError, fill_template, get_template_by_id, list_templates

GENERATE_PATH = "/api/generate"

app = FastAPI(title="MVP Insight Pipeline")


def build_services(target: FastAPI) -> None:
    """One Gemini client and one LLM engine per process, shared by every request."""
    gemini = GeminiClient()
    target.state.gemini_client = gemini
    target.state.llm_engine = LLMEngine(create_default_adapter(gemini_client=gemini))
    target.state.market_analysis = MarketAnalysisGenerator(gemini)


build_services(app)


def get_llm_engine(request: Request) -> LLMEngine:
    return request.app.state.llm_engine


def get_market_analysis(request: Request) -> MarketAnalysisGenerator:
    return request.app.state.market_analysis


def _error(status_code: int, message: str, code: str, details=None) -> JSONResponse:
    error = {"message": message, "code": code}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("request.invalid path=%s errors=%d", request.url.path, len(exc.errors()))
    if request.url.path == GENERATE_PATH:
        return _error(400, "Invalid request body", "INVALID_REQUEST")
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.get("/")
def root():
    # Render default health checks may hit "/".
    return {"ok": True, "service": "mvp_insight_pipeline"}


@app.get("/healthz")
def healthz(
    engine: LLMEngine = Depends(get_llm_engine),
    analysis: MarketAnalysisGenerator = Depends(get_market_analysis),
):
    return {"ok": True, "llm": engine.is_available(), "gemini": analysis.is_available()}


@app.get("/api/templates", response_model=TemplatesResponse)
def templates_endpoint():
    return {
        "templates": [
            {"id": t.id, "name": t.name, "description": t.description, "variables": list(t.variables)}
            for t in list_templates()
        ]
    }


@app.post(GENERATE_PATH, response_model=GenerateResponse, response_model_exclude_none=True)
def generate_endpoint(req: GenerateRequest, engine: LLMEngine = Depends(get_llm_engine)):
    if not req.template_id or req.input is None:
        return _error(400, "Missing required fields: templateId or input", "INVALID_REQUEST")

    logger.info("generate.request template_id=%s input_keys=%d", req.template_id, len(req.input))
    try:
        filled = fill_template(get_template_by_id(req.template_id), req.input)
    except PromptError as e:
        logger.info("generate.prompt_error template_id=%s code=%s", req.template_id, e.code.value)
        return JSONResponse(status_code=400, content={"error": e.to_payload()})

    if not engine.is_available():
        logger.warning("generate.unavailable template_id=%s", req.template_id)
        return _error(503, "LLM service is not available", "SERVICE_UNAVAILABLE")

    try:
        response = engine.generate_completion(
            filled.user_message,
            LLMOptions(system_message=filled.system_message),
        )
    except LLMError as e:
        logger.error("generate.llm_error template_id=%s code=%s status=%s", req.template_id, e.code, e.status, exc_info=True)
        return _error(500, e.message, "INTERNAL_ERROR")
    except Exception as e:
        logger.error("generate.failed template_id=%s", req.template_id, exc_info=True)
        return _error(500, str(e) or "An unexpected error occurred", "INTERNAL_ERROR")

    logger.info(
        "generate.response template_id=%s model=%s content_chars=%d",
        req.template_id,
        response.model,
        len(response.content),
    )
    return response.to_dict()


@app.post("/api/market-analysis")
def market_analysis_endpoint(
    req: MarketAnalysisRequest,
    analysis: MarketAnalysisGenerator = Depends(get_market_analysis),
):
    if not req.project_description:
        return JSONResponse(status_code=400, content={"error": "Project description is required"})
    if not analysis.is_available():
        logger.warning("market_analysis.unavailable")
        return JSONResponse(status_code=503, content={"error": "Market analysis service is not available"})

    try:
        result = analysis.generate(req.project_description)
    except MarketAnalysisError:
        return JSONResponse(status_code=500, content={"error": "Failed to generate market analysis"})
    except Exception:
        logger.error("market_analysis.unexpected_error", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to generate market analysis"})

    return result.to_dict()


@app.post("/api/market-analysis-summary", response_model=SummaryResponse)
def market_analysis_summary_endpoint(
    req: SummaryRequest,
    analysis: MarketAnalysisGenerator = Depends(get_market_analysis),
):
    if not req.analysis_content:
        return JSONResponse(status_code=400, content={"error": "Analysis content is required"})

    try:
        summary = analysis.summarize(req.analysis_content)
    except Exception:
        logger.error("market_analysis_summary.failed", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to generate summary"})

    return {"summary": summary}


@app.post("/api/market-analysis/chart-data", response_model=ChartDataResponse)
def chart_data_endpoint(
    req: ChartDataRequest,
    analysis: MarketAnalysisGenerator = Depends(get_market_analysis),
):
    if not req.content:
        return JSONResponse(status_code=400, content={"error": "Content is required"})

    chart_data = analysis.chart_data_for_content(req.content, min_items=req.min_items, max_items=req.max_items)
    return {"chartData": chart_data}
