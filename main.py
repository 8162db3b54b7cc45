"""
RevEnGo Analysis Service - Entry Point
FastAPI server exposing /analyze and /health.
"""

import gc
import os
import shutil
from contextlib import asynccontextmanager
from typing import List

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# .env must be loaded before the config module reads the environment
load_dotenv()

from revengo.api.routes import router, SERVICE_VERSION
from revengo.models.registry import available_providers, get_cost_tracker
from revengo.utils.config import get_config
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

ENVIRONMENT = os.getenv('ENVIRONMENT', 'development')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# uploads are held in memory briefly; collect more eagerly on small instances
GC_THRESHOLD = int(os.getenv('GC_THRESHOLD', '50'))
gc.set_threshold(GC_THRESHOLD, 5, 5)


def _cors_origins() -> List[str]:
    raw = os.getenv('CORS_ORIGINS', '*')
    if raw == '*':
        return ["*"]
    return [origin.strip() for origin in raw.split(',') if origin.strip()]


def _status(flag: bool, ok: str = "✅ Configured", missing: str = "❌ Missing") -> str:
    return ok if flag else missing


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup banner and shutdown usage report."""
    config = get_config()
    options = config.get('analysis_options', {})

    logger.info("=" * 60)
    logger.info("REVENGO ANALYSIS SERVICE STARTING")
    logger.info("=" * 60)
    logger.info(f"Environment: {ENVIRONMENT} | Log Level: {LOG_LEVEL} | GC threshold: {GC_THRESHOLD}")
    logger.info(f"CORS Origins: {_cors_origins()}")
    logger.info(f"Default capability: {config.get('default_capability')}")
    logger.info(f"Providers: {', '.join(available_providers())}")
    logger.info(f"Anthropic: {_status(bool(os.getenv('ANTHROPIC_API_KEY')))}")
    logger.info(f"OpenAI: {_status(bool(os.getenv('OPENAI_API_KEY')))}")
    logger.info(f"strings tool: {_status(shutil.which('strings') is not None, '✅ Available', '❌ Not found (regex fallback)')}")
    logger.info(
        f"Task timeout: {options.get('task_timeout_seconds')}s | "
        f"Max file size: {options.get('max_file_size_mb')} MB"
    )
    logger.info("=" * 60)

    yield

    usage = get_cost_tracker().summary()
    logger.info(
        f"RevEnGo Analysis Service shutting down | Calls: {usage['calls']} "
        f"(failed {usage['failed_calls']}) | Tokens: {usage['total_tokens']} | "
        f"Cost: ${usage['total_cost_usd']:.4f}"
    )


def _configure_monitoring(app: FastAPI):
    """Optional Logfire instrumentation; the service runs without it."""
    try:
        import logfire
    except ImportError:
        logger.info("ℹ️ Logfire not installed (optional)")
        return

    try:
        token = os.getenv('LOGFIRE_TOKEN')
        if token:
            logfire.configure(token=token, inspect_arguments=False)
            logfire.instrument_fastapi(app)
            logger.info("✅ Logfire configured")
        else:
            logfire.configure(inspect_arguments=False, send_to_logfire=False)
            logger.info("⚠️ Logfire in local mode (LOGFIRE_TOKEN not set)")
    except Exception as e:
        logger.warning(f"⚠️ Logfire configuration skipped: {e}")


app = FastAPI(
    title="RevEnGo - Binary Inspection & Analysis Service",
    description="Format-aware binary inspection with concurrent LLM-assisted analysis",
    version=SERVICE_VERSION,
    docs_url="/docs" if ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if ENVIRONMENT != "production" else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)
_configure_monitoring(app)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv('PORT', 5000))
    logger.info(f"Starting server on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level=LOG_LEVEL.lower())
