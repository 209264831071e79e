# FILE: main.py
"""
Maturity Interpretation Service - FastAPI Application
Version: 0.3.0

Features:
- Adaptive interpretation pipeline (generate -> critique -> clarify -> finalize)
- Bounded clarifying questions per run and per round
- Evidence-grounded five-section report with quality gate
- Capacity-constrained 6m / 12m / 24m action plan

Run:
    uvicorn main:app --reload
"""
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from maturity.db import init_db
from maturity.interpretation.collaborators import LlmDraftCritic, LlmDraftGenerator
from maturity.interpretation.config import load_interpretation_config
from maturity.interpretation.router import router as interpretation_router
from maturity.providers.registry import ProviderRegistry

logging.basicConfig(
    level=os.getenv("MATURITY_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("maturity")

app = FastAPI(
    title="Maturity Interpretation",
    version="0.3.0",
    description="Adaptive interpretation pipeline and action planning for maturity diagnostics",
)

# ====== CORS ======

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("MATURITY_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    os.makedirs("data", exist_ok=True)
    init_db()

    config = load_interpretation_config()
    registry = ProviderRegistry()
    timeout = config.collaborators.timeout_seconds

    app.state.interpretation_config = config
    app.state.draft_generator = LlmDraftGenerator(registry, config.models, timeout)
    app.state.draft_critic = LlmDraftCritic(registry, config.models, timeout)

    limits = config.limits
    logger.info(
        f"[startup] Loop limits: rounds={limits.max_rounds} questions_total={limits.max_questions_total} "
        f"per_round={limits.max_questions_per_round} ai_calls={limits.max_ai_calls_per_session}"
    )
    for provider_id in ("openai", "anthropic"):
        if registry.is_provider_available(provider_id):
            logger.info(f"[startup] {provider_id}: [OK] available")
        else:
            logger.warning(f"[startup] {provider_id}: [X] NOT AVAILABLE (missing key or SDK)")
    for role, (provider_id, model_id) in (
        ("generator", config.models.generator_route),
        ("critic", config.models.critic_route),
    ):
        logger.info(f"[startup] {role}: {provider_id or 'first available'}/{model_id}")


# ====== ROUTERS ======

app.include_router(
    interpretation_router,
    prefix="/interpretation",
    tags=["interpretation"],
)


@app.get("/health")
def health():
    return {"status": "ok"}
