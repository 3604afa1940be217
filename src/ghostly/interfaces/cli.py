"""Ghostly CLI.

Click-based command line interface for Ghostly Memory Bank.

Usage:
    ghostly init
    ghostly capture "npm run build" --exit-code 1 --stderr "Error: Module not found"
    ghostly recall "module not found"
    ghostly search "docker"
    ghostly consolidate
    ghostly stats
    ghostly session show
    ghostly config set retrieval.min_confidence 0.6
"""

import functools
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click

from ghostly.engines.retrieval import format_memory
from ghostly.errors import GhostlyError
from ghostly.memory_bank import MemoryBank
from ghostly.models.retrieval import RetrievalResult
from ghostly.settings import get_setting, load_settings, reset_settings, set_setting
from ghostly.utils.project import detect_git_branch
import ghostly.config as cfg

_bank: Optional[MemoryBank] = None
_data_dir: Optional[Path] = None


def _settings_file() -> Path:
    return (_data_dir / "settings.json") if _data_dir else cfg.SETTINGS_FILE


def get_bank() -> MemoryBank:
    global _bank
    if _bank is None:
        settings = load_settings(_settings_file())
        db_path = (_data_dir / "ghostly.db") if _data_dir else None
        _bank = MemoryBank(settings=settings, db_path=db_path)
        _bank.initialize()
    return _bank


def _json_out(data):
    """Print data as JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


def _reports_errors(fn):
    """Report GhostlyError as a one-line message and exit non-zero."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except GhostlyError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    return wrapper


def _echo_retrieval(result: RetrievalResult, output_format: str, quick: bool = False) -> None:
    if not result.triggered:
        return
    if not result.memories:
        click.echo(result.message or "No relevant memories found")
        return

    if quick:
        click.echo(result.formatted)
    else:
        for memory in result.memories:
            click.echo(format_memory(memory, output_format))
            click.echo()
    if result.suggestion:
        click.echo(f"Suggestion: {result.suggestion}")


# =============================================================================
# Root group
# =============================================================================

@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path),
              help="Data directory (default: $GHOSTLY_DATA_DIR or ~/.ghostly)")
def cli(verbose, data_dir):
    """Ghostly - memory for your terminal."""
    global _data_dir
    _data_dir = data_dir
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Init
# =============================================================================

@cli.command()
@_reports_errors
def init():
    """Create the database and show where data lives."""
    bank = get_bank()
    s = bank.stats()
    click.echo("Ghostly initialized")
    click.echo(f"  Database:   {s['db_path']}")
    click.echo(f"  Settings:   {_settings_file()}")
    click.echo(f"  Embeddings: {s['embedding_model']}")
    click.echo(f"  Episodes:   {s['episodes']}")


# =============================================================================
# Capture
# =============================================================================

@cli.command()
@click.argument("command")
@click.option("--exit-code", type=int, help="Exit status of the command")
@click.option("--stdout", "stdout_text", default="", help="Captured standard output")
@click.option("--stderr", "stderr_text", default="", help="Captured standard error")
@click.option("--cwd", help="Working directory (default: current)")
@click.option("--branch", help="Current git branch (default: detected from --cwd)")
@click.option("--session", "session_id", help="Session ID (default: latest active)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@_reports_errors
def capture(command, exit_code, stdout_text, stderr_text, cwd, branch, session_id, as_json):
    """Record an executed command and surface related memories."""
    bank = get_bank()
    session = bank.load_session(session_id) if session_id else None
    cwd = cwd or os.getcwd()

    result = bank.capture(
        command=command,
        cwd=cwd,
        exit_code=exit_code,
        stdout=stdout_text,
        stderr=stderr_text,
        git_branch=branch or detect_git_branch(cwd),
        session=session,
    )

    if as_json:
        _json_out(result.model_dump(mode="json"))
        return

    if result.retrieval and result.retrieval.memories:
        _echo_retrieval(result.retrieval, bank.settings.output.format, quick=True)


# =============================================================================
# Recall
# =============================================================================

@cli.command()
@click.argument("query")
@click.option("--cwd", help="Working directory to scope the project")
@click.option("-n", "--limit", type=click.IntRange(min=1), help="Max memories")
@click.option("--quick", is_flag=True, help="Only the top memory and suggestion")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@_reports_errors
def recall(query, cwd, limit, quick, as_json):
    """Find past episodes relevant to a problem description."""
    bank = get_bank()
    result = bank.recall(query, cwd=cwd or os.getcwd(), limit=limit)

    if as_json:
        _json_out({
            "query": query,
            "status": result.status.value,
            "count": len(result.memories),
            "suggestion": result.suggestion,
            "message": result.message,
            "results": [
                {
                    "id": m.id,
                    "summary": m.episode.summary,
                    "problem": m.episode.problem,
                    "fix": m.episode.fix,
                    "confidence": round(m.confidence, 4),
                    "semantic_score": round(m.semantic_score, 4),
                    "project_match": m.project_match,
                    "cmd_score": round(m.cmd_score, 4),
                }
                for m in result.memories
            ],
        })
        return

    _echo_retrieval(result, bank.settings.output.format, quick=quick)


# =============================================================================
# Search
# =============================================================================

@cli.command()
@click.argument("terms")
@click.option("-n", "--limit", type=click.IntRange(min=1), default=5, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@_reports_errors
def search(terms, limit, as_json):
    """Plain text search over stored episodes."""
    bank = get_bank()
    found = bank.search(terms, limit=limit)

    if as_json:
        _json_out({
            "terms": terms,
            "count": len(found),
            "results": [ep.model_dump(mode="json") for ep in found],
        })
        return

    if not found:
        click.echo("No episodes found.")
        return

    click.echo(f"Found {len(found)} episodes:\n")
    for i, ep in enumerate(found, 1):
        click.echo(f"  {i}. {ep.summary}")
        click.echo(f"     fix: {ep.fix}")
        if ep.keywords:
            click.echo(f"     keywords: {', '.join(ep.keywords)}")
        click.echo(f"     id: {ep.id}")
        click.echo()


# =============================================================================
# Consolidate
# =============================================================================

@cli.command()
@click.option("--session", "session_id", help="Session ID (default: latest)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@_reports_errors
def consolidate(session_id, as_json):
    """Turn a session's multi-step workflows into episodes."""
    bank = get_bank()
    created = bank.consolidate(session_id)

    if as_json:
        _json_out({"created": [ep.model_dump(mode="json") for ep in created]})
        return

    if not created:
        click.echo("No new workflows found.")
        return

    click.echo(f"Created {len(created)} workflow episodes:")
    for ep in created:
        click.echo(f"  {ep.id}: {ep.fix}")


# =============================================================================
# Stats
# =============================================================================

@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@_reports_errors
def stats(as_json):
    """Show storage statistics."""
    s = get_bank().stats()

    if as_json:
        _json_out(s)
        return

    click.echo("Ghostly Statistics")
    click.echo("=" * 40)
    click.echo(f"  Events:      {s['events']}")
    click.echo(f"  Episodes:    {s['episodes']}")
    click.echo(f"  Embeddings:  {s['embeddings']}")
    click.echo(f"  Projects:    {s['projects']}")
    click.echo(f"  Sessions:    {s['sessions']}")
    click.echo(f"  Model:       {s['embedding_model']}")


# =============================================================================
# Session
# =============================================================================

@cli.group()
def session():
    """Terminal session commands."""
    pass


@session.command("show")
@click.option("--session", "session_id", help="Session ID (default: latest active)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@_reports_errors
def session_show(session_id, as_json):
    """Show the current session."""
    info = get_bank().session_info(session_id)

    if as_json:
        _json_out(info)
        return

    click.echo(f"Session: {info['session_id']}")
    click.echo(f"  Directory:     {info.get('cwd') or '-'}")
    click.echo(f"  Branch:        {info.get('git_branch') or '-'}")
    click.echo(f"  Events:        {info['events']}")
    click.echo(f"  Started:       {info.get('started_at') or '-'}")
    click.echo(f"  Last activity: {info.get('last_activity') or '-'}")
    if info.get("ended_at"):
        click.echo(f"  Ended:         {info['ended_at']}")


@session.command("end")
@click.option("--session", "session_id", help="Session ID (default: latest)")
@_reports_errors
def session_end(session_id):
    """End a session so the next capture starts a new one."""
    bank = get_bank()
    session_id = session_id or bank.store.get_latest_session_id()
    if not session_id or not bank.end_session(session_id):
        click.echo("No session to end.")
        return
    click.echo(f"Ended session {session_id}")


# =============================================================================
# Config
# =============================================================================

@cli.group()
def config():
    """Settings management commands."""
    pass


@config.command("show")
@click.argument("key", required=False)
@_reports_errors
def config_show(key):
    """Show all settings, or one by dot path."""
    settings = load_settings(_settings_file())
    if key:
        value = get_setting(settings, key)
        if value is None:
            click.echo(f"Error: unknown setting '{key}'", err=True)
            sys.exit(1)
        click.echo(value.value if hasattr(value, "value") else value)
        return
    _json_out(settings.model_dump(mode="json"))


@config.command("set")
@click.argument("key")
@click.argument("value")
@_reports_errors
def config_set(key, value):
    """Set a setting by dot path, e.g. output.format verbose."""
    applied = set_setting(key, value, path=_settings_file())
    for dotpath, new_value in applied.items():
        click.echo(f"Set {dotpath} = {new_value}")


@config.command("reset")
@_reports_errors
def config_reset():
    """Restore default settings."""
    reset_settings(_settings_file())
    click.echo("Settings reset to defaults.")


def main():
    cli()


if __name__ == "__main__":
    main()
