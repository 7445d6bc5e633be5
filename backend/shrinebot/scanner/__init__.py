"""Channel history scan and role reconciliation engine."""

from .classifier import BatchClassifier
from .engine import ProgressSink, ScanEngine
from .errors import (
    ChannelUnavailable,
    FetchTransient,
    GrantTransient,
    RateLimited,
    ReportGenerationError,
    ScanError,
    ScanNotConfigured,
    UnknownMember,
)
from .grants import GrantResult, ParticipationLedger, RoleGranter
from .models import Participant, ScanMember, ScannedMessage
from .pacing import Pacer
from .pager import HistoryPager, Page
from .remote import ChannelService, DiscordChannelService
from .report import ReportArtifact, ReportWriter, ScanReport, build_report
from .retry_queue import MAX_RETRY_ATTEMPTS, RetryItem, RoleGrantRetryQueue
from .session import ScanSession

__all__ = [
    "MAX_RETRY_ATTEMPTS",
    "BatchClassifier",
    "ChannelService",
    "ChannelUnavailable",
    "DiscordChannelService",
    "FetchTransient",
    "GrantResult",
    "GrantTransient",
    "HistoryPager",
    "Pacer",
    "Page",
    "Participant",
    "ParticipationLedger",
    "ProgressSink",
    "RateLimited",
    "ReportArtifact",
    "ReportGenerationError",
    "ReportWriter",
    "RetryItem",
    "RoleGrantRetryQueue",
    "RoleGranter",
    "ScanEngine",
    "ScanError",
    "ScanMember",
    "ScanNotConfigured",
    "ScanReport",
    "ScanSession",
    "ScannedMessage",
    "UnknownMember",
    "build_report",
]
