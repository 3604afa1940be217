"""SignificanceClassifier - decides which terminal events become episodes.

Rules, evaluated in order, first match wins:
1. non-zero exit code                      -> error_exit
2. error pattern in stderr                 -> error_in_stderr
3. error pattern in stdout                 -> error_in_stdout
4. non-ignored command of an important tool -> important_command
Anything else is noise.
"""

from typing import Iterable, Optional

from ghostly.config import IMPORTANT_COMMANDS
from ghostly.models.event import RawEvent
from ghostly.models.retrieval import SignificanceResult
from ghostly.settings import CaptureSettings
from ghostly.types import SignificanceReason


def get_command_name(command: Optional[str]) -> str:
    """First whitespace-delimited token of a command line."""
    if not command:
        return ""
    parts = command.split()
    return parts[0] if parts else ""


def contains_pattern(text: Optional[str], patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match against any pattern."""
    if not text:
        return False
    lower = text.lower()
    return any(pattern.lower() in lower for pattern in patterns if pattern)


def is_error_exit_code(exit_code: Optional[int]) -> bool:
    return exit_code is not None and exit_code != 0


class SignificanceClassifier:
    """Pure function of an event and the capture settings."""

    def __init__(self, settings: Optional[CaptureSettings] = None):
        self._settings = settings or CaptureSettings()

    def should_ignore(self, command: Optional[str]) -> bool:
        """Noise filter: the command's base name is on the ignore list."""
        return get_command_name(command) in self._settings.ignore_commands

    def has_error(self, output: Optional[str]) -> bool:
        return contains_pattern(output, self._settings.error_patterns)

    def has_success(self, output: Optional[str]) -> bool:
        return contains_pattern(output, self._settings.success_patterns)

    def is_error_event(self, event: RawEvent) -> bool:
        """Failed exit, or error text on either stream."""
        return (
            is_error_exit_code(event.exit_code)
            or self.has_error(event.stderr_excerpt)
            or self.has_error(event.stdout_excerpt)
        )

    def classify(self, event: RawEvent) -> SignificanceResult:
        """Decide whether an event is worth turning into an episode."""
        if is_error_exit_code(event.exit_code):
            return SignificanceResult(is_significant=True, reason=SignificanceReason.ERROR_EXIT)

        if self.has_error(event.stderr_excerpt):
            return SignificanceResult(is_significant=True, reason=SignificanceReason.ERROR_IN_STDERR)

        if self.has_error(event.stdout_excerpt):
            return SignificanceResult(is_significant=True, reason=SignificanceReason.ERROR_IN_STDOUT)

        if not self.should_ignore(event.command):
            if get_command_name(event.command) in IMPORTANT_COMMANDS:
                return SignificanceResult(
                    is_significant=True, reason=SignificanceReason.IMPORTANT_COMMAND,
                )

        return SignificanceResult(is_significant=False, reason=None)
