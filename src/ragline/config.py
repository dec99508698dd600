"""ragline configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (RAGLINE_EMBEDDING_MODEL, RAGLINE_CONTEXT_MODEL,
                             RAGLINE_LOG_LEVEL)
  3. Per-project ragline.yaml  (working directory)
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

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or rrf_k.
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
    ["embedding", "context", "chunking", "pipeline", "retrieval", "clustering", "logging"]
)

_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


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
    """Embedding provider configuration (ragline.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 20


@dataclass
class ContextCfg:
    """Situating-context generation (ragline.yaml: context:)."""

    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 100
    temperature: float = 0.3
    window: int = 2
    timeout: float = 30.0


@dataclass
class ChunkingCfg:
    """Semantic chunker sizing (ragline.yaml: chunking:)."""

    chunk_size: int = 256


@dataclass
class PipelineCfg:
    """Processing pipeline + ingestion worker (ragline.yaml: pipeline:).

    Attributes:
        concurrency: Parallel provider calls within one pipeline run.
        workers: Ingestion runs executing at the same time.
        skip_context: Use a metadata-only context instead of the LLM.
    """

    concurrency: int = 5
    workers: int = 4
    skip_context: bool = False


@dataclass
class RetrievalCfg:
    """Hybrid retrieval (ragline.yaml: retrieval:)."""

    mode: str = "hybrid"  # hybrid | dense | fts
    top_k: int = 5
    rrf_k: int = 60
    vector_weight: float = 0.7
    threshold: float = 0.15
    candidate_multiplier: int = 5
    max_content_length: int = 8_000


@dataclass
class ClusteringCfg:
    """Question clustering (ragline.yaml: clustering:)."""

    similarity_threshold: float = 0.85
    sample_cap: int = 500
    small_sample_size: int = 5
    timeout: float = 20.0
    stable_order: bool = False


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class RaglineConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    context: ContextCfg = field(default_factory=ContextCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    pipeline: PipelineCfg = field(default_factory=PipelineCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    clustering: ClusteringCfg = field(default_factory=ClusteringCfg)
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
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RaglineConfig) -> None:
    if cfg.chunking.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {cfg.chunking.chunk_size}")
    if cfg.pipeline.concurrency < 1 or cfg.pipeline.workers < 1:
        raise ConfigError("pipeline.concurrency and pipeline.workers must be >= 1")
    if not 0.0 <= cfg.retrieval.vector_weight <= 1.0:
        raise ConfigError(
            f"retrieval.vector_weight must be in [0, 1], got {cfg.retrieval.vector_weight}"
        )
    if cfg.retrieval.mode not in ("hybrid", "dense", "fts"):
        raise ConfigError(
            f"retrieval.mode must be hybrid, dense or fts, got '{cfg.retrieval.mode}'"
        )
    if not -1.0 <= cfg.clustering.similarity_threshold <= 1.0:
        raise ConfigError(
            "clustering.similarity_threshold must be a cosine similarity in [-1, 1]"
        )
    if cfg.logging.level not in _LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {sorted(_LOG_LEVELS)}")


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

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
        )

    if "context" in data:
        c = data["context"] or {}
        cfg.context = ContextCfg(
            model=str(c.get("model", cfg.context.model)),
            max_tokens=int(c.get("max_tokens", cfg.context.max_tokens)),
            temperature=float(c.get("temperature", cfg.context.temperature)),
            window=int(c.get("window", cfg.context.window)),
            timeout=float(c.get("timeout", cfg.context.timeout)),
        )

    if "chunking" in data:
        ch = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(ch.get("chunk_size", cfg.chunking.chunk_size)),
        )

    if "pipeline" in data:
        p = data["pipeline"] or {}
        cfg.pipeline = PipelineCfg(
            concurrency=int(p.get("concurrency", cfg.pipeline.concurrency)),
            workers=int(p.get("workers", cfg.pipeline.workers)),
            skip_context=bool(p.get("skip_context", cfg.pipeline.skip_context)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            mode=str(r.get("mode", cfg.retrieval.mode)),
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            rrf_k=int(r.get("rrf_k", cfg.retrieval.rrf_k)),
            vector_weight=float(r.get("vector_weight", cfg.retrieval.vector_weight)),
            threshold=float(r.get("threshold", cfg.retrieval.threshold)),
            candidate_multiplier=int(
                r.get("candidate_multiplier", cfg.retrieval.candidate_multiplier)
            ),
            max_content_length=int(
                r.get("max_content_length", cfg.retrieval.max_content_length)
            ),
        )

    if "clustering" in data:
        cl = data["clustering"] or {}
        cfg.clustering = ClusteringCfg(
            similarity_threshold=float(
                cl.get("similarity_threshold", cfg.clustering.similarity_threshold)
            ),
            sample_cap=int(cl.get("sample_cap", cfg.clustering.sample_cap)),
            small_sample_size=int(
                cl.get("small_sample_size", cfg.clustering.small_sample_size)
            ),
            timeout=float(cl.get("timeout", cfg.clustering.timeout)),
            stable_order=bool(cl.get("stable_order", cfg.clustering.stable_order)),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())

    return cfg


def _apply_env_overrides(cfg: RaglineConfig) -> RaglineConfig:
    """Apply RAGLINE_* environment variable overrides."""
    if model := os.environ.get("RAGLINE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("RAGLINE_CONTEXT_MODEL"):
        cfg.context.model = model
    if level := os.environ.get("RAGLINE_LOG_LEVEL"):
        cfg.logging.level = level.upper()
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
        ConfigError: If global config contains API-key-like fields or a value
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

