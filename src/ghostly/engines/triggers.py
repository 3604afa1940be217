"""TriggerEvaluator - decides whether a context warrants a retrieval attempt.

Triggers in priority order: error, repeated command, project entry,
branch change. The context-change flags are computed here too, from the
caller-owned SessionState rather than from module globals.
"""

import logging
from typing import Optional

from ghostly.config import REPEAT_WINDOW_HOURS
from ghostly.engines.significance import get_command_name
from ghostly.models.context import Context, SessionState
from ghostly.models.event import RawEvent
from ghostly.models.retrieval import TriggerDecision
from ghostly.settings import TriggerSettings
from ghostly.storage.episode_store import EpisodeStore, window_start
from ghostly.types import TriggerReason
from ghostly.utils.project import generate_project_hash

logger = logging.getLogger(__name__)

# Recent events inspected for repeated-command detection
REPEAT_SCAN_LIMIT = 200


class TriggerEvaluator:
    """First enabled trigger that matches wins."""

    def __init__(self, settings: Optional[TriggerSettings] = None):
        self._settings = settings or TriggerSettings()

    def evaluate(self, context: Context) -> TriggerDecision:
        s = self._settings
        if s.on_error and context.has_error:
            return TriggerDecision(should_trigger=True, reason=TriggerReason.ERROR)
        if s.on_repeat_command and context.is_repeated:
            return TriggerDecision(should_trigger=True, reason=TriggerReason.REPEATED_COMMAND)
        if s.on_project_entry and context.is_project_entry:
            return TriggerDecision(should_trigger=True, reason=TriggerReason.PROJECT_ENTRY)
        if s.on_branch_change and context.branch_changed:
            return TriggerDecision(should_trigger=True, reason=TriggerReason.BRANCH_CHANGE)
        return TriggerDecision(should_trigger=False, reason=None)


# =============================================================================
# Context construction
# =============================================================================

def is_repeated_command(event: RawEvent, recent_events: list[RawEvent]) -> bool:
    """Same base command already ran in the same project within the repeat window."""
    cmd_name = get_command_name(event.command)
    if not cmd_name:
        return False
    cutoff = window_start(REPEAT_WINDOW_HOURS, now=event.timestamp)
    return any(
        get_command_name(prev.command) == cmd_name
        and prev.project_hash == event.project_hash
        and prev.timestamp >= cutoff
        for prev in recent_events
        if prev.id is None or prev.id != event.id
    )


def detect_context_changes(
    event: RawEvent,
    session: SessionState,
    store: EpisodeStore,
) -> dict[str, bool]:
    """Compare an event against the session's previous location.

    Project entry means moving into a different project the store has seen
    before. Branch change needs both branches known.
    """
    is_project_entry = False
    if session.last_directory and event.cwd and event.cwd != session.last_directory:
        previous_project = generate_project_hash(session.last_directory)
        if previous_project != event.project_hash:
            is_project_entry = store.get_project(event.project_hash) is not None

    branch_changed = bool(
        session.last_branch
        and event.git_branch
        and event.git_branch != session.last_branch
    )

    recent = store.get_recent_events(
        limit=REPEAT_SCAN_LIMIT,
        project_hash=event.project_hash,
        since=window_start(REPEAT_WINDOW_HOURS, now=event.timestamp),
    )

    return {
        "is_repeated": is_repeated_command(event, recent),
        "is_project_entry": is_project_entry,
        "branch_changed": branch_changed,
    }


def build_context(event: RawEvent, session: SessionState, store: EpisodeStore) -> Context:
    """Retrieval context for an event that was just recorded."""
    changes = detect_context_changes(event, session, store)
    logger.debug(f"Context changes for '{event.command}': {changes}")
    return Context(
        command=event.command,
        cwd=event.cwd,
        git_branch=event.git_branch,
        exit_code=event.exit_code,
        error_excerpt=event.stderr_excerpt,
        project_hash=event.project_hash,
        **changes,
    )
