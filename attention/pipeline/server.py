"""
Attention Server

FastAPI server that accepts normalized provider events and runs them
through the attention pipeline.

Endpoints:
- GET /health: Health check
- POST /attention/events: Submit a RawAttentionEvent
- GET /attention/config: Current config (secrets redacted)
- POST /attention/config/reload: Re-read config from disk and rewire

Signature verification and deduplication happen in front of this server.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query

from ..common.config import AttentionConfig, AttentionConfigService, config_to_dict
from ..common.schemas import RawAttentionEvent
from .classifier import ClassificationAgent
from .dispatch import DispatchManager
from .orchestrator import AttentionPipeline
from .transports import SlackTransport

logger = logging.getLogger("attention.pipeline.server")

DEFAULT_PORT = 8090


def build_pipeline(config: AttentionConfig, data_dir: Optional[Path] = None) -> AttentionPipeline:
    """Wire classifier, transports and pipeline for a config snapshot"""
    dispatch = DispatchManager()
    slack_target = config.dispatch_targets.slack
    if slack_target and slack_target.channel_id:
        slack = SlackTransport(slack_target, data_dir=data_dir)
        dispatch.register_transport("slack", slack.send)
        logger.info("Slack transport registered (channel: %s)", slack_target.channel_id)
    else:
        logger.info("Slack transport not registered (no channel configured)")

    classifier = ClassificationAgent.from_config(config)
    backend = classifier.backend
    if classifier.is_available:
        logger.info("Classifier ready (%s at %s)", backend.version, backend.base_url)
    else:
        logger.warning("Classifier %s not configured (missing API key); events will be discarded", backend.version)

    return AttentionPipeline(config=config, classifier=classifier, dispatch=dispatch)


# Global state
config_service: Optional[AttentionConfigService] = None
pipeline: Optional[AttentionPipeline] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    global config_service, pipeline

    logger.info("Attention server starting up")

    config_service = AttentionConfigService()
    config_service.ensure_defaults()
    config = config_service.load()
    logger.info("Loaded attention config from %s", config_service.config_path)

    pipeline = build_pipeline(config, data_dir=config_service.data_dir)
    logger.info("Ready to receive events")

    yield

    logger.info("Attention server shutting down")


app = FastAPI(
    title="Attention Gateway",
    description="Event classification and notification dispatch",
    version="0.1.0",
    lifespan=lifespan,
)


def _require_pipeline() -> AttentionPipeline:
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


async def process_event(event: RawAttentionEvent, target: AttentionPipeline) -> None:
    """Background task: run one event and log the outcome"""
    result = await target.process(event)
    logger.info(
        "Processed %s/%s -> %s (score: %.1f)",
        event.source, event.kind, result.outcome.value, result.classification.urgency_score,
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    backend = pipeline.classifier.backend if pipeline else None
    return {
        "status": "healthy",
        "service": "attention",
        "initialized": pipeline is not None,
        "provider": backend.provider if backend else None,
        "classifier": backend.version if backend else None,
        "classifier_available": pipeline.classifier.is_available if pipeline else False,
        "transports": pipeline.dispatch_manager.channels if pipeline else [],
    }


@app.post("/attention/events")
async def submit_event(
    event: RawAttentionEvent,
    background_tasks: BackgroundTasks,
    wait: bool = Query(False, description="Run inline and return the pipeline result"),
):
    """
    Accept one event.

    By default the event is processed in the background and the call returns
    immediately; ``?wait=true`` returns the AttentionPipelineResult.
    """
    target = _require_pipeline()

    if wait:
        result = await target.process(event)
        return result.to_json_dict()

    background_tasks.add_task(process_event, event, target)
    return {"ok": True, "accepted": True}


@app.get("/attention/config")
async def get_config():
    """Current config with the classifier API key redacted"""
    if config_service is None:
        raise HTTPException(status_code=503, detail="Config service not initialized")

    config = config_service.get()
    data = config_to_dict(config)
    if config.guardrails.api_key:
        data["guardrails"]["api_key"] = "***"
    data["path"] = str(config_service.config_path)
    return data


@app.post("/attention/config/reload")
async def reload_config():
    """Re-read the config file and rewire the pipeline"""
    global pipeline

    if config_service is None:
        raise HTTPException(status_code=503, detail="Config service not initialized")

    config = config_service.reload()
    pipeline = build_pipeline(config, data_dir=config_service.data_dir)
    return {
        "status": "reloaded",
        "default_threshold": config.default_threshold,
        "thresholds": config.thresholds,
        "transports": pipeline.dispatch_manager.channels,
    }


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the attention server"""
    import uvicorn

    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    port = int(os.getenv("ATTENTION_PORT", DEFAULT_PORT))
    logger.info("Starting attention server on port %d", port)
    uvicorn.run(
        "attention.pipeline.server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
