"""EpisodeSynthesizer - distills terminal events into problem/fix episodes.

Two entry points:
- from_event: one significant event becomes one episode, with the command
  itself as the fix.
- group_into_episodes + from_events: chronologically adjacent events of
  one project form a multi-step workflow whose fix is the command chain.

Synthesis never raises on partial events; missing text degrades to "".
"""

from typing import Optional, Sequence, Union

from ghostly.config import (
    ERROR_SIGNATURES,
    GIT_SUBCOMMANDS,
    PACKAGE_ACTIONS,
    PACKAGE_MANAGERS,
    PROBLEM_MAX_CHARS,
    PROBLEM_MAX_LINES,
    SEQUENCE_PROBLEM_PREVIEW_CHARS,
    STEP_SEPARATOR,
)
from ghostly.engines.significance import SignificanceClassifier, get_command_name, is_error_exit_code
from ghostly.models.episode import Episode
from ghostly.models.event import RawEvent
from ghostly.settings import CaptureSettings
from ghostly.utils.project import project_name


def _first_lines(text: str, max_lines: int = PROBLEM_MAX_LINES) -> str:
    lines = text.split("\n")[:max_lines]
    return " ".join(line.strip() for line in lines if line.strip())


def _environment(cwd: str, git_branch: Optional[str], dir_label: str = "dir") -> str:
    parts = []
    if cwd:
        parts.append(f"{dir_label}: {cwd}")
    if git_branch:
        parts.append(f"branch: {git_branch}")
    return ", ".join(parts)


def extract_keywords(event: RawEvent) -> list[str]:
    """Deduplicated keyword tags for an event, in discovery order."""
    keywords: dict[str, None] = {}
    command = event.command or ""

    cmd_name = get_command_name(command)
    if cmd_name:
        keywords[cmd_name] = None

    if "git" in command:
        for sub in GIT_SUBCOMMANDS:
            if sub in command:
                keywords[f"git-{sub}"] = None

    if any(manager in command for manager in PACKAGE_MANAGERS):
        for action in PACKAGE_ACTIONS:
            if action in command:
                keywords[action] = None

    if event.stderr_excerpt:
        stderr = event.stderr_excerpt.lower()
        for signature in ERROR_SIGNATURES:
            if signature.lower() in stderr:
                keywords[signature] = None

    tail = project_name(event.cwd)
    if len(tail) > 1:
        keywords[tail] = None

    return list(keywords)


class EpisodeSynthesizer:
    """Builds Episode records from raw events."""

    def __init__(
        self,
        settings: Optional[CaptureSettings] = None,
        classifier: Optional[SignificanceClassifier] = None,
    ):
        self._settings = settings or CaptureSettings()
        self._classifier = classifier or SignificanceClassifier(self._settings)

    # =========================================================================
    # Single event
    # =========================================================================

    def from_event(self, event: RawEvent) -> Episode:
        """One event, one episode. The fix is the command that was run."""
        problem = _first_lines(event.stderr_excerpt or "")[:PROBLEM_MAX_CHARS]
        if not problem and is_error_exit_code(event.exit_code):
            problem = f"Command exited with code {event.exit_code}"

        cmd_name = get_command_name(event.command)
        summary = f"{cmd_name} - {problem or 'success'} ({event.cwd or 'unknown'})"

        return Episode(
            project_hash=event.project_hash,
            summary=summary,
            problem=problem,
            environment=_environment(event.cwd, event.git_branch),
            fix=event.command,
            keywords=extract_keywords(event),
            event_ids=[event.id] if event.id is not None else [],
        )

    # =========================================================================
    # Sequences
    # =========================================================================

    def group_into_episodes(self, events: Sequence[RawEvent]) -> list[list[RawEvent]]:
        """Split a chronological event stream into workflow groups.

        A new group starts when the gap to the previous event exceeds the
        sequence window or the project changes. Groups shorter than the
        minimum sequence length are dropped.
        """
        window_seconds = self._settings.sequence_window_minutes * 60
        min_length = self._settings.min_sequence_length
        ordered = sorted(events, key=lambda e: e.timestamp)

        groups: list[list[RawEvent]] = []
        current: list[RawEvent] = []
        for event in ordered:
            starts_new = (
                not current
                or (event.timestamp - current[-1].timestamp).total_seconds() > window_seconds
                or event.project_hash != current[0].project_hash
            )
            if starts_new:
                if len(current) >= min_length:
                    groups.append(current)
                current = [event]
            else:
                current.append(event)

        if len(current) >= min_length:
            groups.append(current)
        return groups

    def from_events(self, events: Sequence[RawEvent]) -> Episode:
        """Multi-step episode from one workflow group.

        Raises:
            ValueError: if ``events`` is empty.
        """
        if not events:
            raise ValueError("Cannot synthesize an episode from an empty group")

        first = events[0]
        error_event = next((e for e in events if self._classifier.is_error_event(e)), None)

        problem = ""
        if error_event is not None:
            problem = _first_lines(error_event.stderr_excerpt or "")[:PROBLEM_MAX_CHARS]
            if not problem and is_error_exit_code(error_event.exit_code):
                problem = f"Commands failed with exit code {error_event.exit_code}"

        summary = f"Multi-step workflow: {len(events)} commands"
        if problem:
            summary += f" - {problem[:SEQUENCE_PROBLEM_PREVIEW_CHARS]}"

        return Episode(
            project_hash=first.project_hash,
            summary=summary,
            problem=problem,
            environment=_environment(first.cwd, first.git_branch, dir_label="cwd"),
            fix=STEP_SEPARATOR.join(e.command for e in events),
            keywords=extract_keywords(first),
            event_ids=[e.id for e in events if e.id is not None],
        )

    def synthesize(self, source: Union[RawEvent, Sequence[RawEvent]]) -> Episode:
        """Dispatch on a single event or an event group."""
        if isinstance(source, RawEvent):
            return self.from_event(source)
        if len(source) == 1:
            return self.from_event(source[0])
        return self.from_events(source)
