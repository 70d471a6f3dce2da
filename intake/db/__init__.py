"""Database utilities for the signal pipeline."""

from .models import (  # noqa: F401
    Base,
    CanonicalTag,
    CanonicalTheme,
    Company,
    CompanyGroup,
    CompanyGroupMember,
    GroupProcessingState,
    GroupSnapshot,
    JobRun,
    JobStage,
    JobStatus,
    NormalizedSummary,
    OriginType,
    RawItem,
    RawItemStatus,
    SourceType,
    StrategicSummary,
    SummaryStatus,
    SummaryTag,
    SummaryTheme,
    TopicObservation,
    TopicState,
)
from .session import get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "CanonicalTag",
    "CanonicalTheme",
    "Company",
    "CompanyGroup",
    "CompanyGroupMember",
    "GroupProcessingState",
    "GroupSnapshot",
    "JobRun",
    "JobStage",
    "JobStatus",
    "NormalizedSummary",
    "OriginType",
    "RawItem",
    "RawItemStatus",
    "SourceType",
    "StrategicSummary",
    "SummaryStatus",
    "SummaryTag",
    "SummaryTheme",
    "TopicObservation",
    "TopicState",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
