"""ragline configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (RAGLINE_EMBEDDING_MODEL, RAGLINE_JUDGE_MODEL,
     RAGLINE_GENERATION_MODEL, RAGLINE_LOG_LEVEL, RAGLINE_DB)
  3. Per-project ragline.yaml
  4. Global ~/.ragline/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragline"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragline.yaml"
DEFAULT_DB_NAME: str = ".ragline.db"

DEFAULT_FALLBACK_MESSAGE: str = (
    "I apologize, but I'm unable to provide a helpful response to that question. "
    "Please try rephrasing your question or ask about something else I can help with."
)

DEFAULT_SYSTEM_PROMPT: str = (
    "You are a helpful assistant. Answer using the knowledge base provided."
)

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Does NOT match max_context_tokens etc.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "database",
        "embedding",
        "chunking",
        "retrieval",
        "generation",
        "judge",
        "jobs",
        "logging",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (ragline.yaml: embedding:).

    Attributes:
        model: litellm model string.
        dimensions: Vector length for this agent. Also selects the vec table.
        batch_size: Max texts per provider request.
        num_retries: Transport-level retries inside litellm for one request.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    num_retries: int = 2


@dataclass
class ChunkingCfg:
    """Sliding-window chunker sizes, in approximate tokens (4 chars each)."""

    target_tokens: int = 500
    overlap_tokens: int = 100


@dataclass
class RetrievalCfg:
    top_k: int = 5
    max_context_tokens: int = 4_000
    max_history_tokens: int = 2_000


@dataclass
class GenerationCfg:
    """Answer model for `ragline ask` (ragline.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tokens: int = 1024
    temperature: float = 0.3


@dataclass
class JudgeCfg:
    """Response judge configuration (ragline.yaml: judge:)."""

    model: str = "openai/gpt-4o-mini"
    pass_threshold: float = 0.7
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    enabled: bool = True


@dataclass
class BackoffCfg:
    """Retry delay: base * multiplier ** (attempt - 1), capped, plus jitter."""

    base_seconds: float = 30.0
    max_seconds: float = 900.0
    multiplier: float = 2.0
    jitter: float = 0.2


@dataclass
class JobsCfg:
    max_attempts: int = 3
    storage_batch_size: int = 50
    backoff: BackoffCfg = field(default_factory=BackoffCfg)


@dataclass
class LoggingCfg:
    level: str = "INFO"
    json: bool = False


@dataclass
class DatabaseCfg:
    path: str = DEFAULT_DB_NAME


@dataclass
class RaglineConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    judge: JudgeCfg = field(default_factory=JudgeCfg)
    jobs: JobsCfg = field(default_factory=JobsCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RaglineConfig) -> None:
    """Reject values the pipeline cannot run with."""
    c = cfg.chunking
    if c.target_tokens < 1:
        raise ConfigError(f"chunking.target_tokens must be >= 1, got {c.target_tokens}")
    if not 0 <= c.overlap_tokens < c.target_tokens:
        raise ConfigError(
            "chunking.overlap_tokens must be >= 0 and smaller than target_tokens "
            f"(got overlap={c.overlap_tokens}, target={c.target_tokens})"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.embedding.batch_size < 1:
        raise ConfigError(f"embedding.batch_size must be >= 1, got {cfg.embedding.batch_size}")
    if not 0.0 <= cfg.judge.pass_threshold <= 1.0:
        raise ConfigError(
            f"judge.pass_threshold must be between 0 and 1, got {cfg.judge.pass_threshold}"
        )
    if cfg.jobs.max_attempts < 1:
        raise ConfigError(f"jobs.max_attempts must be >= 1, got {cfg.jobs.max_attempts}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RaglineConfig:
    """Build a *RaglineConfig* from a merged raw YAML dict."""
    cfg = RaglineConfig()

    if "database" in data:
        d = data["database"]
        cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            target_tokens=int(c.get("target_tokens", cfg.chunking.target_tokens)),
            overlap_tokens=int(c.get("overlap_tokens", cfg.chunking.overlap_tokens)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            max_context_tokens=int(
                r.get("max_context_tokens", cfg.retrieval.max_context_tokens)
            ),
            max_history_tokens=int(
                r.get("max_history_tokens", cfg.retrieval.max_history_tokens)
            ),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            system_prompt=str(g.get("system_prompt", cfg.generation.system_prompt)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
        )

    if "judge" in data:
        j = data["judge"]
        cfg.judge = JudgeCfg(
            model=str(j.get("model", cfg.judge.model)),
            pass_threshold=float(j.get("pass_threshold", cfg.judge.pass_threshold)),
            fallback_message=str(j.get("fallback_message", cfg.judge.fallback_message)),
            enabled=bool(j.get("enabled", cfg.judge.enabled)),
        )

    if "jobs" in data:
        jb = data["jobs"]
        b = jb.get("backoff", {})
        defaults = cfg.jobs.backoff
        cfg.jobs = JobsCfg(
            max_attempts=int(jb.get("max_attempts", cfg.jobs.max_attempts)),
            storage_batch_size=int(
                jb.get("storage_batch_size", cfg.jobs.storage_batch_size)
            ),
            backoff=BackoffCfg(
                base_seconds=float(b.get("base_seconds", defaults.base_seconds)),
                max_seconds=float(b.get("max_seconds", defaults.max_seconds)),
                multiplier=float(b.get("multiplier", defaults.multiplier)),
                jitter=float(b.get("jitter", defaults.jitter)),
            ),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            json=bool(lg.get("json", cfg.logging.json)),
        )

    return cfg


def _apply_env_overrides(cfg: RaglineConfig) -> RaglineConfig:
    """Apply RAGLINE_* environment variable overrides."""
    if model := os.environ.get("RAGLINE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("RAGLINE_JUDGE_MODEL"):
        cfg.judge.model = model
    if model := os.environ.get("RAGLINE_GENERATION_MODEL"):
        cfg.generation.model = model
    if level := os.environ.get("RAGLINE_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if db_path := os.environ.get("RAGLINE_DB"):
        cfg.database.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RaglineConfig:
    """Load and return a merged *RaglineConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *ragline.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.ragline/config.yaml`` with defaults if it does not exist.

    Parent directory gets mode 0o700, the file 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# ragline global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "judge:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
