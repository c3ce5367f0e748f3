#!/usr/bin/env python3
"""
Sample Event Runner

Pushes one event through the attention pipeline using the local config
(<data_dir>/attention/config.json plus environment overrides) and prints
the pipeline result as JSON.

Without --event a critical WHOOP recovery event is used.

Usage:
    python scripts/run_sample_event.py [--event event.json] [--data-dir DIR]
"""

import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


SAMPLE_EVENT = {
    "source": "whoop",
    "kind": "recovery",
    "payload": {
        "status": "critical",
        "readiness_score": 23,
        "strain": 18.9,
        "sleep_need": 9.2,
        "sleep_obtained": 5.4,
        "notes": "Recovery in the red after back-to-back high strain days. Heart rate variability down 38%.",
    },
    "metadata": {"priority": 9},
}


def load_event(path):
    if path is None:
        return dict(SAMPLE_EVENT)
    with open(path, encoding="utf-8") as f:
        return json.load(f)


async def run(event_data, data_dir):
    from dotenv import load_dotenv
    from attention.common.config import AttentionConfigService
    from attention.common.schemas import RawAttentionEvent
    from attention.pipeline.server import build_pipeline

    load_dotenv()

    service = AttentionConfigService(data_dir=data_dir)
    config = service.load()
    print(f"[Sample] Config: {service.config_path}" + ("" if service.config_path.exists() else " (not found, using defaults)"))

    pipeline = build_pipeline(config, data_dir=service.data_dir)
    backend = pipeline.classifier.backend
    print(f"[Sample] Classifier: {backend.version} at {backend.base_url}")
    if not pipeline.classifier.is_available:
        print("[Sample] WARNING: classifier API key not configured, the event will be discarded")

    event = RawAttentionEvent.model_validate(event_data)
    print(f"[Sample] Processing {event.source}/{event.kind}...")
    result = await pipeline.process(event)
    return result.to_json_dict()


def main():
    parser = argparse.ArgumentParser(description="Run one event through the attention pipeline")
    parser.add_argument("--event", type=str, default=None, help="Path to a JSON file holding a raw event")
    parser.add_argument("--data-dir", type=str, default=None, help="Gateway data directory (default: ~/.attention-gateway)")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level for pipeline logs")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    try:
        event_data = load_event(args.event)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[Sample] ERROR: Failed to read event file: {e}")
        sys.exit(1)

    from pydantic import ValidationError

    try:
        result = asyncio.run(run(event_data, Path(args.data_dir) if args.data_dir else None))
    except ValidationError as e:
        print(f"[Sample] ERROR: Invalid event: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
