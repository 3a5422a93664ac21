"""Transcript relay: forwards a coding agent's session transcript to a human.

Key Components:
    - monitoring: checkpoint store, incremental JSONL reader, record models
    - classifier: what a record means to a human (text, question, nothing)
    - delivery: chunked, paced sending through a Messenger
    - monitoring_service: the polling orchestrator
"""

__version__ = "0.1.0"

from .classifier import PlanConfirmationDetector, RecordClassifier
from .config import ConfigError, RelayConfig, load_config
from .dedup import BoundedTTLCache, DedupGuard
from .delivery import DeliveryPipeline, split_message
from .messenger import LogMessenger, Messenger, WebhookMessenger
from .monitoring_service import TranscriptMonitor

__all__ = [
    "__version__",
    "BoundedTTLCache",
    "ConfigError",
    "DedupGuard",
    "DeliveryPipeline",
    "LogMessenger",
    "Messenger",
    "PlanConfirmationDetector",
    "RecordClassifier",
    "RelayConfig",
    "TranscriptMonitor",
    "WebhookMessenger",
    "load_config",
    "split_message",
]
