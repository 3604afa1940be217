"""Configuration constants for Ghostly Memory Bank."""

import os
from pathlib import Path


# =============================================================================
# Paths
# =============================================================================
def _resolve_data_dir() -> Path:
    """Resolve data directory: GHOSTLY_DATA_DIR env var, or ~/.ghostly/"""
    env_dir = os.environ.get("GHOSTLY_DATA_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".ghostly"


DATA_DIR = _resolve_data_dir()
SQLITE_DB = DATA_DIR / "ghostly.db"
SETTINGS_FILE = DATA_DIR / "settings.json"

# =============================================================================
# Embedding
# =============================================================================
EMBEDDING_PROVIDER = "auto"     # "auto", "sbert", "ollama", "fallback"
SBERT_MODEL = "all-MiniLM-L6-v2"
EMBEDDING_DIM = 384
OLLAMA_EMBEDDING_MODEL = "nomic-embed-text"
OLLAMA_BASE_URL = "http://localhost:11434"
EMBEDDING_TIMEOUT_SECONDS = 10.0

# =============================================================================
# Capture
# =============================================================================
SESSION_TIMEOUT_MINUTES = 30
SEQUENCE_WINDOW_MINUTES = 5     # max gap between events of one workflow
MIN_SEQUENCE_LENGTH = 3
REPEAT_WINDOW_HOURS = 24

ERROR_PATTERNS = [
    "error", "fail", "failed", "exception", "fatal",
    "critical", "permission denied", "not found",
    "no such file", "command not found",
]
SUCCESS_PATTERNS = ["success", "done", "completed", "passed", "ok"]
IGNORE_COMMANDS = [
    "ls", "ll", "la", "pwd", "cd", "clear",
    "echo", "history", "which", "whoami", "date", "time",
]

# Tools whose invocations are worth remembering even when they succeed
IMPORTANT_COMMANDS = frozenset({
    "git", "npm", "yarn", "pnpm", "docker", "kubectl",
    "python", "pip", "cargo", "go", "make", "cmake",
    "bundle", "rake", "gradle", "mvn", "javac", "node",
    "tsc", "eslint", "prettier", "jest", "pytest",
    "curl", "wget", "ssh", "scp", "rsync",
    "psql", "mysql", "mongosh", "redis-cli",
})

# Keyword extraction vocabularies
GIT_SUBCOMMANDS = ["push", "pull", "commit", "merge", "rebase", "checkout", "branch"]
PACKAGE_MANAGERS = ["npm", "yarn", "pnpm"]
PACKAGE_ACTIONS = ["install", "run", "build", "test", "start", "dev"]
ERROR_SIGNATURES = [
    "error", "fail", "exception", "ENOENT", "EACCES", "ECONNREFUSED",
    "timeout", "invalid", "undefined", "null", "cannot", "unable",
]

# =============================================================================
# Episodes
# =============================================================================
STEP_SEPARATOR = " → "
PROBLEM_MAX_LINES = 3
PROBLEM_MAX_CHARS = 500
SEQUENCE_PROBLEM_PREVIEW_CHARS = 100

# =============================================================================
# Retrieval
# =============================================================================
MIN_CONFIDENCE = 0.75
WEIGHT_SEMANTIC_SIMILARITY = 0.5
WEIGHT_PROJECT_MATCH = 0.3
WEIGHT_COMMAND_SIMILARITY = 0.2
MAX_MEMORIES = 3
CANDIDATE_LIMIT = 100           # recent project episodes scanned by semantic search
LEXICAL_SIMILARITY = 0.5        # placeholder similarity for text-search hits

TRIGGER_ON_ERROR = True
TRIGGER_ON_REPEAT_COMMAND = True
TRIGGER_ON_PROJECT_ENTRY = True
TRIGGER_ON_BRANCH_CHANGE = True

NO_MATCHES_MESSAGE = "No relevant memories found"

# =============================================================================
# Output
# =============================================================================
OUTPUT_FORMAT = "compact"       # "compact" or "verbose"
SHOW_SUGGESTIONS = True
MAX_STDOUT_LENGTH = 10000
MAX_STDERR_LENGTH = 5000

# =============================================================================
# Project detection
# =============================================================================
PROJECT_MARKERS = [
    "package.json",      # Node.js
    "Cargo.toml",        # Rust
    "go.mod",            # Go
    "pyproject.toml",    # Python
    "requirements.txt",  # Python
    "Gemfile",           # Ruby
    "pom.xml",           # Java
    "build.gradle",      # Java/Kotlin
    "CMakeLists.txt",    # C/C++
    "Makefile",          # Generic
    ".git",              # Git repo
]
NON_PROJECT_DIRS = {"node_modules", ".git", "vendor", "venv", "dist", "build"}
UNKNOWN_PROJECT = "unknown"
