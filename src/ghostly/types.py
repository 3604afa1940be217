"""Core enums and type definitions for Ghostly Memory Bank."""

from enum import Enum


class SignificanceReason(str, Enum):
    """Why a raw event was judged worth turning into an episode."""
    ERROR_EXIT = "error_exit"                  # non-zero exit code
    ERROR_IN_STDERR = "error_in_stderr"        # error pattern on stderr
    ERROR_IN_STDOUT = "error_in_stdout"        # error pattern on stdout
    IMPORTANT_COMMAND = "important_command"    # allowlisted tool


class TriggerReason(str, Enum):
    """Named conditions that authorize a retrieval attempt, in priority order."""
    ERROR = "error"
    REPEATED_COMMAND = "repeated_command"
    PROJECT_ENTRY = "project_entry"
    BRANCH_CHANGE = "branch_change"


class RetrievalStatus(str, Enum):
    """Terminal outcomes of the retrieval pipeline."""
    NOT_TRIGGERED = "not_triggered"
    NO_MATCHES = "no_matches"
    MATCHED = "matched"


class SearchMode(str, Enum):
    """Which search produced a candidate list."""
    SEMANTIC = "semantic"
    LEXICAL = "lexical"


class OutputFormat(str, Enum):
    """Rendering modes for a retrieved memory."""
    COMPACT = "compact"
    VERBOSE = "verbose"
