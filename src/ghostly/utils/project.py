"""Project identity helpers.

A project hash is a short stable identifier for the nearest recognized
project root above a working directory.
"""

import hashlib
import subprocess
from pathlib import PurePosixPath, Path
from typing import Optional

from ghostly.config import NON_PROJECT_DIRS, PROJECT_MARKERS, UNKNOWN_PROJECT

GIT_TIMEOUT_SECONDS = 2.0


def _hash_path(path: str) -> str:
    return hashlib.md5(path.encode()).hexdigest()[:8]


def find_project_root(cwd: str) -> Optional[Path]:
    """Walk up from cwd to the first directory holding a project marker."""
    try:
        current = Path(cwd).expanduser()
    except (TypeError, ValueError):
        return None
    for candidate in (current, *current.parents):
        try:
            if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
                return candidate
        except OSError:
            return None
    return None


def generate_project_hash(cwd: Optional[str]) -> str:
    """Derive the project hash for a working directory.

    Prefers a marker-bearing root found on disk. Without one, trailing
    build/vendor/hidden directories are stripped and the remaining path
    is hashed, so a path inside node_modules maps to its owning project.
    """
    if not cwd:
        return UNKNOWN_PROJECT

    root = find_project_root(cwd)
    if root is not None:
        return _hash_path(str(root))

    parts = PurePosixPath(cwd).parts
    for end in range(len(parts), 0, -1):
        last = parts[end - 1]
        if last in NON_PROJECT_DIRS or last.startswith(".") or last == "/":
            continue
        return _hash_path(str(PurePosixPath(*parts[:end])))

    return _hash_path(cwd)


def project_name(cwd: Optional[str]) -> str:
    """Trailing path segment of cwd, or '' for an empty/root path."""
    if not cwd:
        return ""
    return PurePosixPath(cwd.rstrip("/")).name


def detect_git_branch(cwd: Optional[str]) -> Optional[str]:
    """Branch checked out in the repository containing cwd.

    None outside a repository, on a detached HEAD, or when git is missing.
    """
    if not cwd:
        return None
    try:
        proc = subprocess.run(
            ["git", "symbolic-ref", "--quiet", "--short", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    branch = proc.stdout.strip()
    return branch if proc.returncode == 0 and branch else None
