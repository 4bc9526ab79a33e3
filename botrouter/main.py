"""
FastAPI application: bot-router, complexity- and cost-aware LLM routing.

Endpoints
─────────
POST /route                         Classify, resolve, budget-check, call through a fallback chain.
GET  /health                        Health check.

/routing (admin, {code, data} envelope)
GET  /status  POST /refresh         Config snapshot status / reload.
CRUD /capability-tags /fallback-chains /cost-strategies /complexity-configs /model-pricing
POST /classify-complexity  /calculate-cost  /select-model
GET  /bot-usage/{bot_id}  /bot-budget/{bot_id}
GET  /export  POST /import

Run: uvicorn botrouter.main:app --reload   (or the bot-router console script)
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Body, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from botrouter import database
from botrouter.budget import BudgetGuard
from botrouter.cache import ConfigCache
from botrouter.capabilities import check_skills_availability, parse_capability_requirements
from botrouter.classifier import ClassifierConfig, ComplexityClassifier, LLMEndpoint
from botrouter.config import load_settings
from botrouter.cost import ModelSelector
from botrouter.database import EntityKind
from botrouter.errors import (
    ConfigIntegrityError,
    ConfigNotFoundError,
    DbError,
    DbErrorKind,
    UpstreamError,
)
from botrouter.fallback import FallbackEngine
from botrouter.models import (
    CalculateCostInput,
    ClassifyComplexityInput,
    ComplexityRouteDecision,
    FallbackChain,
    FallbackModel,
    ImportConfigInput,
    RouteRequest,
    RouteResponse,
    SelectModelInput,
    TokenUsage,
)
from botrouter.protocol import extract_usage, response_text
from botrouter.providers.upstream import UpstreamClient
from botrouter.router import ComplexityRouter, extract_message_and_context
from botrouter.transfer import export_config, import_config

# ---------------------------------------------------------------------------
# Config + logging
# ---------------------------------------------------------------------------

settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)

database.DB_PATH = settings.db_path

if not (settings.classifier_api_key or settings.llm_api_key):
    logger.warning("No classifier or LLM API key set; every message will classify as medium")

# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

config_cache      = ConfigCache()
classifier        = ComplexityClassifier(
    ClassifierConfig(
        model=settings.classifier_model,
        vendor=settings.classifier_vendor,
        base_url=settings.classifier_base_url,
        api_key=settings.classifier_api_key,
        timeout_ms=settings.classifier_timeout_ms,
    ),
    LLMEndpoint(base_url=settings.llm_base_url, api_key=settings.llm_api_key),
)
complexity_router = ComplexityRouter(config_cache, classifier)
model_selector    = ModelSelector(config_cache)
budget_guard      = BudgetGuard()
upstream          = UpstreamClient(settings)
fallback_engine   = FallbackEngine(upstream.call)


# ---------------------------------------------------------------------------
# Lifespan: DB init, seed, snapshot load
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.init_db()
    if settings.seed_defaults:
        await database.seed_defaults()
    await config_cache.refresh()
    yield
    await classifier.aclose()
    await upstream.aclose()


app = FastAPI(
    title="bot-router",
    description="Complexity- and cost-aware LLM routing with fallback chains and budgets.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Envelope + error mapping
# ---------------------------------------------------------------------------

def ok(data: Any) -> dict:
    return {"code": 0, "data": _plain(data)}


def _plain(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [_plain(d) for d in data]
    if isinstance(data, dict):
        return {k: _plain(v) for k, v in data.items()}
    return data


def _error(status_code: int, message: str, data: Any = None) -> JSONResponse:
    content = {"code": status_code, "message": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


_DB_ERROR_STATUS = {
    DbErrorKind.NOT_FOUND: 404,
    DbErrorKind.UNIQUE_CONSTRAINT: 409,
    DbErrorKind.FOREIGN_KEY_VIOLATION: 409,
    DbErrorKind.TRANSACTION_CONFLICT: 409,
    DbErrorKind.UNKNOWN: 500,
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
    return _error(422, "Invalid request", jsonable_encoder(errors))


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
    return _error(422, "Invalid config", jsonable_encoder(errors))


@app.exception_handler(ConfigNotFoundError)
async def not_found_handler(request: Request, exc: ConfigNotFoundError) -> JSONResponse:
    return _error(404, str(exc))


@app.exception_handler(ConfigIntegrityError)
async def integrity_handler(request: Request, exc: ConfigIntegrityError) -> JSONResponse:
    return _error(500, str(exc))


@app.exception_handler(DbError)
async def db_error_handler(request: Request, exc: DbError) -> JSONResponse:
    return _error(_DB_ERROR_STATUS[exc.kind], str(exc), {"kind": exc.kind.value})


# ---------------------------------------------------------------------------
# Admin router: /routing
# ---------------------------------------------------------------------------

routing = APIRouter(prefix="/routing", tags=["routing"])


@routing.get("/status")
def routing_status() -> dict:
    return ok(config_cache.status())


@routing.post("/refresh")
async def routing_refresh() -> dict:
    await config_cache.refresh()
    return ok(config_cache.status())


def _register_crud(path: str, kind: EntityKind) -> None:
    """GET list, GET one, POST, PUT, DELETE for one config entity, keyed by its natural key."""
    model = kind.model

    async def list_items(
        limit: Optional[int] = Query(default=None, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
    ) -> dict:
        return ok({"list": await database.list_entities(kind, limit=limit, offset=offset)})

    async def get_item(key: str) -> dict:
        entity = await database.get_entity(kind, key)
        if entity is None:
            raise HTTPException(status_code=404, detail=f"{kind.label} not found: {key!r}")
        return ok(entity)

    async def create_item(body: model = Body(...)) -> dict:
        entity = await database.create_entity(kind, body)
        await config_cache.refresh()
        return ok(entity)

    async def update_item(key: str, body: model = Body(...)) -> dict:
        entity = await database.update_entity(kind, key, body)
        await config_cache.refresh()
        return ok(entity)

    async def delete_item(key: str) -> dict:
        await database.delete_entity(kind, key)
        await config_cache.refresh()
        return ok({"deleted": key})

    name = kind.table
    routing.add_api_route(path, list_items, methods=["GET"], name=f"list_{name}")
    routing.add_api_route(f"{path}/{{key}}", get_item, methods=["GET"], name=f"get_{name}")
    routing.add_api_route(path, create_item, methods=["POST"], name=f"create_{name}")
    routing.add_api_route(f"{path}/{{key}}", update_item, methods=["PUT"], name=f"update_{name}")
    routing.add_api_route(f"{path}/{{key}}", delete_item, methods=["DELETE"], name=f"delete_{name}")


_register_crud("/capability-tags", database.CAPABILITY_TAGS)
_register_crud("/fallback-chains", database.FALLBACK_CHAINS)
_register_crud("/cost-strategies", database.COST_STRATEGIES)
_register_crud("/complexity-configs", database.COMPLEXITY_CONFIGS)
_register_crud("/model-pricing", database.MODEL_PRICING)


@routing.post("/classify-complexity")
async def classify_complexity(body: ClassifyComplexityInput) -> dict:
    """Manual classifier test.  With configId, that config's classifier and tool floor apply."""
    if body.config_id:
        config = complexity_router.get_config(body.config_id)
        result = await classifier.with_config(config).classify(
            body.message, body.context, body.has_tools
        )
        level = complexity_router.effective_level(config, result.level, body.has_tools)
        return ok({**_plain(result), "level": level.value})
    return ok(await classifier.classify(body.message, body.context, body.has_tools))


@routing.post("/calculate-cost")
def calculate_cost(body: CalculateCostInput) -> dict:
    usage = TokenUsage.model_validate(body.model_dump(exclude={"model"}))
    return ok(model_selector.calculate_cost(body.model, usage))


@routing.post("/select-model")
def select_model(body: SelectModelInput) -> dict:
    return ok(model_selector.select_optimal_model(
        body.strategy_id, body.available_models, body.scenario, body.capability_tags
    ))


@routing.get("/bot-usage/{bot_id}")
async def bot_usage(bot_id: str) -> dict:
    usage = await budget_guard.get_bot_usage(bot_id)
    return ok({"dailyCost": usage["daily_cost"], "monthlyCost": usage["monthly_cost"]})


@routing.get("/bot-budget/{bot_id}")
async def bot_budget(
    bot_id: str,
    daily_limit: Optional[float] = Query(default=None, alias="dailyLimit"),
    monthly_limit: Optional[float] = Query(default=None, alias="monthlyLimit"),
    alert_threshold: float = Query(default=0.8, alias="alertThreshold", gt=0, le=1),
) -> dict:
    return ok(await budget_guard.check_budget(bot_id, daily_limit, monthly_limit, alert_threshold))


@routing.get("/export")
async def export_routing_config() -> dict:
    return ok(await export_config())


@routing.post("/import")
async def import_routing_config(body: ImportConfigInput) -> dict:
    try:
        result = await import_config(body)
    finally:
        await config_cache.refresh()
    return ok(result)


app.include_router(routing)


# ---------------------------------------------------------------------------
# Hot path
# ---------------------------------------------------------------------------

@app.get("/health")
def health() -> dict:
    """Health check."""
    status = config_cache.status()
    return {
        "status": "ok",
        "config_loaded": status.complexity_routing_configs.loaded,
        "classifier_configured": bool(settings.classifier_api_key or settings.llm_api_key),
        "anthropic_configured": bool(settings.anthropic_api_key),
    }


def build_route_chain(
    decision: ComplexityRouteDecision, chain: Optional[FallbackChain]
) -> FallbackChain:
    """
    The routed model goes first, carrying the decision's features; the
    chain's models follow, minus any duplicate of the routed model.  Without
    a chain, a single-model chain with no triggers is used.
    """
    selected = decision.selected_model
    features = decision.features
    routed = FallbackModel(
        vendor=selected.vendor,
        model=selected.model,
        protocol=decision.protocol,
        features=features if (features.extended_thinking or features.cache_control) else None,
        base_url=selected.base_url,
    )
    if chain is None:
        return FallbackChain(chain_id="direct", name="Direct", models=[routed], max_retries=0)

    rest = [m for m in chain.models if (m.vendor, m.model) != (routed.vendor, routed.model)]
    return chain.model_copy(update={"models": [routed] + rest})


@app.post("/route", response_model=RouteResponse)
async def route_request(request: RouteRequest) -> RouteResponse:
    """
    Classify the last user message, resolve it to a model via the complexity
    config (the top capability tag may override the pick), check the bot's
    budget (advisory), then call the model through the fallback chain and
    record usage.
    """
    start = time.perf_counter()
    config_id = request.config_id or settings.default_complexity_config_id
    message, context = extract_message_and_context(request.messages)
    has_tools = bool(request.tools)

    logger.info(
        "Received /route request | bot=%s config=%s messages=%d tools=%s",
        request.bot_id, config_id, len(request.messages), has_tools,
    )

    # 1. Build the upstream payload (OpenAI-compatible on the way in)
    payload: dict[str, Any] = {
        "messages": [m.model_dump(exclude_none=True) for m in request.messages],
        "max_tokens": request.max_tokens,
    }
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if request.tools:
        payload["tools"] = request.tools
    if request.thinking:
        payload["thinking"] = request.thinking

    # 2. Capabilities: the top tag may override the complexity pick; skills are advisory
    requirements = parse_capability_requirements(
        payload, config_cache.snapshot.capability_tags, request.routing_hint
    )
    missing_skills = check_skills_availability(requirements, request.installed_skills)
    if missing_skills:
        logger.warning("Missing skills | bot=%s skills=%s", request.bot_id, missing_skills)

    # 3. Classify + resolve, then the advisory budget check
    decision = await complexity_router.route_message(
        config_id, message, context, has_tools, requirements
    )

    budget = await budget_guard.check_budget(
        request.bot_id, request.daily_limit, request.monthly_limit, request.alert_threshold
    )

    # 4. Fallback chain
    chain_id = request.chain_id or settings.default_fallback_chain_id
    chain = config_cache.get_active_chain(chain_id) if chain_id else None
    if request.chain_id and chain is None:
        raise ConfigNotFoundError("fallback chain", request.chain_id)
    route_chain = build_route_chain(decision, chain)

    try:
        result = await fallback_engine.execute(route_chain, payload, "openai-compatible")
    except (UpstreamError, TimeoutError, httpx.HTTPError) as exc:
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        await database.log_usage(
            bot_id=request.bot_id,
            model=decision.selected_model.model,
            vendor=decision.selected_model.vendor,
            protocol=decision.protocol,
            input_tokens=0,
            output_tokens=0,
            cost_usd=0.0,
            latency_ms=latency_ms,
            status="error",
            complexity=decision.level.value,
            config_id=config_id,
            chain_id=route_chain.chain_id,
            error_message=str(exc)[:500],
        )
        # the engine notes the exception only when it ran out of models or retries
        notes = getattr(exc, "__notes__", [])
        if notes:
            logger.error(
                "All models failed | chain=%s config=%s error=%s",
                route_chain.chain_id, config_id, exc,
            )
            detail = (
                f"All models failed (chain={route_chain.chain_id}, config={config_id}). "
                f"Last error: {exc} [{'; '.join(notes)}]"
            )
        else:
            failed = getattr(exc, "model", None) or decision.selected_model.model
            logger.error(
                "Upstream error, not retried | chain=%s model=%s error=%s",
                route_chain.chain_id, failed, exc,
            )
            detail = (
                f"Upstream error from {failed} (chain={route_chain.chain_id}, "
                f"config={config_id}), not retried: {exc}"
            )
        raise HTTPException(status_code=502, detail=detail)

    # 5. Cost + usage log
    usage = extract_usage(result.response, result.protocol)
    cost = model_selector.calculate_cost(result.model.model, usage)
    latency_ms = round((time.perf_counter() - start) * 1000, 1)
    await database.log_usage(
        bot_id=request.bot_id,
        model=result.model.model,
        vendor=result.model.vendor,
        protocol=result.protocol,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        thinking_tokens=usage.thinking_tokens,
        cost_usd=cost.total_cost,
        latency_ms=latency_ms,
        status="success",
        complexity=decision.level.value,
        config_id=config_id,
        chain_id=route_chain.chain_id,
        fallback_index=result.index,
        retries_used=result.retries_used,
    )

    if decision.classifier_skipped:
        reasoning = "No user text to classify, routed on capabilities"
    else:
        reasoning = f"Complexity {decision.complexity.level.value}" + (
            f" (raised to {decision.level.value} for tool use)"
            if decision.level is not decision.complexity.level else ""
        )
    if decision.capability_tag:
        reasoning += f", overridden by capability {decision.capability_tag}"
    reasoning += (
        f" -> {decision.selected_model.vendor}/{decision.selected_model.model} via config {config_id}."
    )
    if result.index > 0:
        reasoning += (
            f" Fell back to {result.model.vendor}/{result.model.model} "
            f"(chain {route_chain.chain_id}, index {result.index}, {result.retries_used} retries)."
        )
        logger.warning(
            "Fallback escalation | %s -> %s", decision.selected_model.model, result.model.model
        )
    if budget.should_downgrade:
        reasoning += " Budget exceeded (advisory)."

    logger.info(
        "Route complete | bot=%s model=%s level=%s cost=$%.6f latency=%.0fms reply_chars=%d",
        request.bot_id, result.model.model, decision.level, cost.total_cost, latency_ms,
        len(response_text(result.response, result.protocol)),
    )
    return RouteResponse(
        response=result.response,
        model_used=result.model.model,
        vendor=result.model.vendor,
        protocol=result.protocol,
        complexity=decision.complexity,
        level=decision.level,
        config_id=config_id,
        chain_id=route_chain.chain_id,
        fallback_index=result.index,
        retries_used=result.retries_used,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        cost_usd=cost.total_cost,
        latency_ms=latency_ms,
        budget=budget,
        missing_skills=missing_skills,
        capability_tag=decision.capability_tag,
        routing_reasoning=reasoning,
    )


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
