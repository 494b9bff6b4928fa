from .dispatcher import CommandDispatcher
from .evidence import EvidenceError, EvidencePipeline
from .notifications import NotificationKey, create_notification
from .publisher import EventPublisher
from .runtime import WorkflowRuntime, build_runtime
from .scheduler import Scheduler, Ticker
from .state_machine import WorkflowStateMachine
from .telemetry import TelemetryBuffer
from .template_matcher import MatchOutcome, MatchResult, SignatureVerifier, TemplateMatcher, classify

__all__ = [
    "CommandDispatcher",
    "EvidenceError",
    "EvidencePipeline",
    "NotificationKey",
    "create_notification",
    "EventPublisher",
    "WorkflowRuntime",
    "build_runtime",
    "Scheduler",
    "Ticker",
    "WorkflowStateMachine",
    "TelemetryBuffer",
    "MatchOutcome",
    "MatchResult",
    "SignatureVerifier",
    "TemplateMatcher",
    "classify",
]
