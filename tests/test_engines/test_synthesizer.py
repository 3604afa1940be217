"""Tests for the EpisodeSynthesizer."""

from datetime import datetime, timedelta

import pytest

from ghostly.engines.synthesizer import EpisodeSynthesizer, extract_keywords
from ghostly.models.event import RawEvent
from ghostly.settings import CaptureSettings


def _event(command, minutes=0, project="proj1234", **kwargs):
    return RawEvent(
        timestamp=datetime(2024, 5, 1, 10, 0) + timedelta(minutes=minutes),
        command=command,
        project_hash=project,
        cwd=kwargs.pop("cwd", "/home/dev/webapp"),
        **kwargs,
    )


class TestFromEvent:
    def test_problem_from_stderr_first_three_lines(self):
        event = _event("npm run build", exit_code=1, stderr_excerpt="line one\nline two\nline three\nline four")
        episode = EpisodeSynthesizer().from_event(event)
        assert episode.problem == "line one line two line three"
        assert "line four" not in episode.problem

    def test_problem_capped_at_500_chars(self):
        event = _event("make", exit_code=2, stderr_excerpt="x" * 2000)
        assert len(EpisodeSynthesizer().from_event(event).problem) == 500

    def test_problem_from_exit_code(self):
        episode = EpisodeSynthesizer().from_event(_event("make", exit_code=2))
        assert episode.problem == "Command exited with code 2"

    def test_success_has_empty_problem(self):
        episode = EpisodeSynthesizer().from_event(_event("git push", exit_code=0))
        assert episode.problem == ""
        assert episode.summary == "git - success (/home/dev/webapp)"

    def test_blank_stderr_falls_back_to_exit_code(self):
        episode = EpisodeSynthesizer().from_event(_event("make", exit_code=2, stderr_excerpt="\n  \n", cwd="/a/b"))
        assert episode.problem == "Command exited with code 2"
        assert episode.summary == "make - Command exited with code 2 (/a/b)"

    def test_summary_with_problem(self):
        event = _event("npm run build", exit_code=1, stderr_excerpt="Error: Module not found")
        episode = EpisodeSynthesizer().from_event(event)
        assert episode.summary == "npm - Error: Module not found (/home/dev/webapp)"

    def test_summary_unknown_cwd(self):
        episode = EpisodeSynthesizer().from_event(_event("make", exit_code=2, cwd=""))
        assert episode.summary.endswith("(unknown)")

    def test_fix_is_command(self):
        episode = EpisodeSynthesizer().from_event(_event("docker compose up -d", exit_code=1))
        assert episode.fix == "docker compose up -d"

    def test_environment(self):
        episode = EpisodeSynthesizer().from_event(_event("git pull", git_branch="feature/x"))
        assert episode.environment == "dir: /home/dev/webapp, branch: feature/x"

    def test_environment_without_branch(self):
        episode = EpisodeSynthesizer().from_event(_event("git pull"))
        assert episode.environment == "dir: /home/dev/webapp"

    def test_event_ids_recorded(self):
        episode = EpisodeSynthesizer().from_event(_event("make", id=42, exit_code=1))
        assert episode.event_ids == [42]

    def test_summary_never_empty(self):
        episode = EpisodeSynthesizer().from_event(RawEvent(command=None, cwd=None))
        assert episode.summary

    def test_carries_project_hash(self):
        episode = EpisodeSynthesizer().from_event(_event("make", project="abcd1234"))
        assert episode.project_hash == "abcd1234"


class TestKeywords:
    def test_git_keywords(self):
        keywords = extract_keywords(_event("git push origin main"))
        assert keywords[0] == "git"
        assert "git-push" in keywords
        assert "webapp" in keywords

    def test_package_manager_actions(self):
        keywords = extract_keywords(_event("npm run build"))
        assert "npm" in keywords
        assert "run" in keywords
        assert "build" in keywords

    def test_error_signatures_from_stderr(self):
        event = _event("node server.js", stderr_excerpt="Error: connect ECONNREFUSED 127.0.0.1:5432")
        keywords = extract_keywords(event)
        assert "ECONNREFUSED" in keywords
        assert "error" in keywords

    def test_deduplicated(self):
        keywords = extract_keywords(_event("npm run build", cwd="/src/npm"))
        assert len(keywords) == len(set(keywords))

    def test_short_directory_skipped(self):
        keywords = extract_keywords(_event("make", cwd="/a"))
        assert "a" not in keywords

    def test_root_directory(self):
        assert extract_keywords(_event("make", cwd="/")) == ["make"]


class TestGrouping:
    def test_five_events_one_group(self, sample_events):
        groups = EpisodeSynthesizer().group_into_episodes(sample_events)
        assert len(groups) == 1
        assert len(groups[0]) == 5

    def test_sixth_event_two_hours_later_starts_new_group(self, sample_events):
        late = sample_events[-1].model_copy(update={
            "id": 6,
            "timestamp": sample_events[-1].timestamp + timedelta(hours=2),
        })
        settings = CaptureSettings(min_sequence_length=1)
        groups = EpisodeSynthesizer(settings).group_into_episodes(sample_events + [late])
        assert [len(g) for g in groups] == [5, 1]
        assert groups[1][0].id == 6

    def test_short_trailing_group_discarded(self, sample_events):
        late = sample_events[-1].model_copy(update={
            "timestamp": sample_events[-1].timestamp + timedelta(hours=2),
        })
        groups = EpisodeSynthesizer().group_into_episodes(sample_events + [late])
        assert len(groups) == 1
        assert len(groups[0]) == 5

    def test_project_change_splits(self):
        events = [_event("make", i) for i in range(3)] + [_event("make", 3 + i, project="other") for i in range(3)]
        groups = EpisodeSynthesizer().group_into_episodes(events)
        assert [g[0].project_hash for g in groups] == ["proj1234", "other"]
        for group in groups:
            assert len({e.project_hash for e in group}) == 1

    def test_gap_measured_from_previous_event(self):
        # Each gap is 4 minutes: within the 5 minute window even though
        # the group spans 12 minutes.
        events = [_event("make", m) for m in (0, 4, 8, 12)]
        groups = EpisodeSynthesizer().group_into_episodes(events)
        assert len(groups) == 1
        assert len(groups[0]) == 4

    def test_unsorted_input(self, sample_events):
        groups = EpisodeSynthesizer().group_into_episodes(list(reversed(sample_events)))
        assert [e.id for e in groups[0]] == [1, 2, 3, 4, 5]

    def test_empty(self):
        assert EpisodeSynthesizer().group_into_episodes([]) == []

    def test_too_short(self):
        assert EpisodeSynthesizer().group_into_episodes([_event("make"), _event("make", 1)]) == []


class TestFromEvents:
    def test_fix_joins_commands_in_order(self, sample_events):
        episode = EpisodeSynthesizer().from_events(sample_events)
        assert episode.fix == " → ".join(e.command for e in sample_events)

    def test_problem_from_first_error_event(self, sample_events):
        episode = EpisodeSynthesizer().from_events(sample_events)
        assert episode.problem == "Error: Module not found at resolve (webpack) at compile"

    def test_summary(self, sample_events):
        episode = EpisodeSynthesizer().from_events(sample_events)
        assert episode.summary.startswith("Multi-step workflow: 5 commands - Error: Module not found")

    def test_summary_without_problem(self):
        events = [_event("make", i, exit_code=0) for i in range(3)]
        episode = EpisodeSynthesizer().from_events(events)
        assert episode.summary == "Multi-step workflow: 3 commands"
        assert episode.problem == ""

    def test_problem_from_exit_code(self):
        events = [_event("make", 0, exit_code=0), _event("make test", 1, exit_code=3), _event("make", 2, exit_code=0)]
        episode = EpisodeSynthesizer().from_events(events)
        assert episode.problem == "Commands failed with exit code 3"

    def test_blank_stderr_falls_back_to_exit_code(self):
        events = [_event("make", 0, exit_code=0), _event("make test", 1, exit_code=3, stderr_excerpt="\n\n"), _event("make", 2)]
        episode = EpisodeSynthesizer().from_events(events)
        assert episode.problem == "Commands failed with exit code 3"

    def test_summary_problem_truncated(self):
        events = [_event("make", 0, exit_code=1, stderr_excerpt="e" * 300), _event("make", 1), _event("make", 2)]
        episode = EpisodeSynthesizer().from_events(events)
        assert episode.summary == "Multi-step workflow: 3 commands - " + "e" * 100

    def test_environment_and_event_ids(self, sample_events):
        episode = EpisodeSynthesizer().from_events(sample_events)
        assert episode.environment == "cwd: /home/dev/webapp, branch: main"
        assert episode.event_ids == [1, 2, 3, 4, 5]

    def test_empty_group_rejected(self):
        with pytest.raises(ValueError):
            EpisodeSynthesizer().from_events([])


class TestSynthesize:
    def test_dispatches_single_event(self, sample_events):
        episode = EpisodeSynthesizer().synthesize(sample_events[1])
        assert episode.fix == "npm run build"

    def test_dispatches_group(self, sample_events):
        episode = EpisodeSynthesizer().synthesize(sample_events)
        assert episode.summary.startswith("Multi-step workflow")
