"""
Infrastructure package for the learnpg sandbox.

Centralizes database connectivity (credential profiles, timeouts, the
introspection pool), namespace reset, single-shot execution and attempt
recording. Keep this layer focused on I/O and resource management, decoupled
from validation and session logic.
"""

from learnpg.infrastructure.attempt_log import (
    AttemptRecord,
    AttemptRecorder,
    JsonlAttemptRecorder,
    NullAttemptRecorder,
)
from learnpg.infrastructure.db_factory import (
    CredentialProfile,
    build_dsn,
    get_sync_connection,
    open_connection,
    ping,
    profile_for,
    session_profile_for,
)
from learnpg.infrastructure.environment import EnvironmentResetter
from learnpg.infrastructure.executor import ColumnInfo, QueryExecutor, QueryResult

__all__ = [
    "AttemptRecord",
    "AttemptRecorder",
    "ColumnInfo",
    "CredentialProfile",
    "EnvironmentResetter",
    "JsonlAttemptRecorder",
    "NullAttemptRecorder",
    "QueryExecutor",
    "QueryResult",
    "build_dsn",
    "get_sync_connection",
    "open_connection",
    "ping",
    "profile_for",
    "session_profile_for",
]
