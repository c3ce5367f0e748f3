"""
Attention Common Module

Shared infrastructure for the pipeline stages and the ingress server.
"""

from .config import (
    AttentionConfig,
    AttentionConfigService,
    DispatchTargets,
    GuardrailConfig,
    SlackTarget,
)
from .llm_utils import extract_json_block

__all__ = [
    "AttentionConfig",
    "AttentionConfigService",
    "DispatchTargets",
    "GuardrailConfig",
    "SlackTarget",
    "extract_json_block",
]
