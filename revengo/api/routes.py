"""
FastAPI routes for the RevEnGo analysis service.
"""

import asyncio
import gc
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile

from revengo.api.models import AnalyzeResponse, HealthResponse
from revengo.core.errors import (
    AccessError,
    AnalysisCancelled,
    SizeLimitExceeded,
    UnknownCapabilityError,
)
from revengo.core.inspector import BinaryInspector
from revengo.core.orchestrator import AnalysisOrchestrator
from revengo.models.registry import (
    available_capabilities,
    available_providers,
    create_capability,
    get_cost_tracker,
)
from revengo.utils.config import get_config
from revengo.utils.logger import RevEnGoLogger, get_logger

logger = get_logger(__name__)
router = APIRouter()

SERVICE_NAME = "revengo"
SERVICE_VERSION = "1.0.0"

# Shared instances (initialized on first use)
_inspector: Optional[BinaryInspector] = None
_orchestrators: Dict[str, AnalysisOrchestrator] = {}


def get_inspector() -> BinaryInspector:
    """Get or create the binary inspector instance (singleton)."""
    global _inspector
    if _inspector is None:
        _inspector = BinaryInspector()
        logger.info(f"Binary inspector initialized | Max size: {_inspector.max_file_size} bytes")
    return _inspector


def get_orchestrator(capability_name: Optional[str] = None) -> AnalysisOrchestrator:
    """Get or create the orchestrator for a capability (one instance per name)."""
    name = capability_name or get_config().get("default_capability", "anthropic")
    if name not in _orchestrators:
        _orchestrators[name] = AnalysisOrchestrator(create_capability(name), inspector=get_inspector())
    return _orchestrators[name]


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event, interval: float = 1.0):
    """Set ``cancel_event`` once the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning("⚠️ Client disconnected - cancelling analysis")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


@router.get("/health", response_model=HealthResponse, tags=["Service"])
async def health():
    """Report configured capabilities and provider credentials."""
    config = get_config()
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        default_capability=config.get("default_capability", "anthropic"),
        capabilities=available_capabilities(config),
        providers=available_providers(),
        anthropic_configured=bool(os.getenv("ANTHROPIC_API_KEY")),
        openai_configured=bool(os.getenv("OPENAI_API_KEY")),
        external_strings_available=shutil.which("strings") is not None,
        usage=get_cost_tracker().summary(),
    )


@router.post("/analyze", response_model=AnalyzeResponse, tags=["Analysis"],
             summary="Analyze File",
             description="Upload a file for structural inspection and LLM-assisted analysis")
async def analyze_file(
    request: Request,
    file: UploadFile = File(..., description="File to analyze (PE, ELF, Mach-O or anything else)"),
    capability: Optional[str] = Form(None, description="Configured capability name (default from config)")
):
    """
    **Inspect and analyze an uploaded file**

    - Sniffs the container format and decodes PE, ELF and Mach-O structure
    - Extracts printable strings
    - Runs extraction, vulnerability scan and summary tasks concurrently

    Tasks that fail or time out are listed in `analysis.failed_tasks`; the
    response is still `success` with whatever the other tasks produced.
    """
    try:
        orchestrator = get_orchestrator(capability)
    except UnknownCapabilityError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        # missing API key for the requested provider
        logger.error(f"Capability unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    file_content = await file.read()
    logger.info(f"Analysis requested for: {file.filename} ({len(file_content)} bytes) [capability={orchestrator.capability.name}]")

    if len(file_content) == 0:
        raise HTTPException(status_code=400, detail="Empty file uploaded")
    max_size = orchestrator.inspector.max_file_size
    if len(file_content) > max_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: {len(file_content)} bytes (max {max_size} bytes)"
        )

    # keep the original name so reports and extension hints match the upload
    tmp_dir = tempfile.mkdtemp(prefix="revengo_")
    tmp_path = Path(tmp_dir) / (Path(file.filename or "").name or "upload.bin")
    tmp_path.write_bytes(file_content)
    del file_content

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        file_info, result = await orchestrator.inspect_and_analyze(str(tmp_path), cancel_event)
        return AnalyzeResponse(
            status="success",
            capability=orchestrator.capability.name,
            file_info=file_info,
            analysis=result,
            inconclusive=result.inconclusive,
        )

    except SizeLimitExceeded as e:
        raise HTTPException(status_code=413, detail=str(e))
    except AnalysisCancelled as e:
        raise HTTPException(status_code=499, detail=str(e))
    except AccessError as e:
        logger.error(f"Uploaded file could not be read back: {e}")
        raise HTTPException(status_code=500, detail=f"Analysis failed: {str(e)}")
    except Exception as e:
        RevEnGoLogger.log_error(logger, e, {"filename": file.filename, "capability": orchestrator.capability.name})
        raise HTTPException(status_code=500, detail=f"Analysis failed: {str(e)}")
    finally:
        watcher.cancel()
        shutil.rmtree(tmp_dir, ignore_errors=True)

        # Force garbage collection after analysis to free memory
        gc.collect()
        logger.debug("🧹 Garbage collection completed")
