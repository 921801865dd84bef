"""Compass configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (COMPASS_GENERATION_MODEL, COMPASS_EMBEDDING_MODEL,
                             COMPASS_CLASSIFIER_MODEL)
  3. Per-project compass.yaml  (next to .compass.db)
  4. Global ~/.compass/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().

The resulting CompassConfig is built once and handed to each component; no
component reads configuration from the process environment on its own.
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".compass"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "compass.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or hard_token_cap.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "generation", "classifier", "chunking", "retrieval", "ingestion"]
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
    """Embedding provider configuration (compass.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length produced by *model*; sizes the vec table.
        batch_size: Maximum inputs per provider call.
        max_input_chars: Inputs longer than this are truncated before sending.
        max_retries: Retries on rate-limit responses (delays 1s, 2s, 4s, ...).
        backoff_base: First retry delay in seconds; doubles per attempt.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    max_input_chars: int = 18_000
    max_retries: int = 3
    backoff_base: float = 1.0


@dataclass
class GenerationCfg:
    """Streaming answer generation (compass.yaml: generation:)."""

    model: str = "claude-sonnet-4-20250514"
    api_url: str = "https://api.anthropic.com/v1/messages"
    api_version: str = "2023-06-01"
    max_tokens: int = 4_096
    temperature: float = 0.3
    timeout: float = 60.0


@dataclass
class ClassifierCfg:
    """Intent classification (compass.yaml: classifier:)."""

    model: str = "anthropic/claude-sonnet-4-20250514"
    max_tokens: int = 256


@dataclass
class ChunkingCfg:
    """Chunker limits (compass.yaml: chunking:).

    Token counts are estimates (ceil(chars / 3)), see compass.ingest.chunker.
    """

    max_tokens: int = 500
    overlap_sentences: int = 2
    hard_token_cap: int = 6_000
    force_split_words: int = 2_000


@dataclass
class RetrievalCfg:
    """Similarity search defaults (compass.yaml: retrieval:)."""

    match_count: int = 10
    match_threshold: float = 0.7
    chat_match_count: int = 8
    chat_match_threshold: float = 0.5


@dataclass
class IngestionCfg:
    """Background ingestion worker pool (compass.yaml: ingestion:)."""

    workers: int = 4


@dataclass
class CompassConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    classifier: ClassifierCfg = field(default_factory=ClassifierCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)


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


def _validate(cfg: CompassConfig) -> None:
    """Raise ConfigError for values no component can work with."""
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if not 1 <= cfg.embedding.batch_size <= 2048:
        raise ConfigError(
            f"embedding.batch_size must be between 1 and 2048, got {cfg.embedding.batch_size}"
        )
    if cfg.chunking.max_tokens < 1 or cfg.chunking.hard_token_cap < cfg.chunking.max_tokens:
        raise ConfigError(
            "chunking.max_tokens must be >= 1 and <= chunking.hard_token_cap "
            f"(got {cfg.chunking.max_tokens} / {cfg.chunking.hard_token_cap})"
        )
    if not -1.0 <= cfg.retrieval.match_threshold <= 1.0:
        raise ConfigError(
            f"retrieval.match_threshold must be in [-1, 1], got {cfg.retrieval.match_threshold}"
        )
    if cfg.ingestion.workers < 1:
        raise ConfigError(f"ingestion.workers must be >= 1, got {cfg.ingestion.workers}")


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


def _cfg_from_dict(data: dict[str, Any]) -> CompassConfig:
    """Build a *CompassConfig* from a merged raw YAML dict."""
    cfg = CompassConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", d.model)),
            dimensions=int(e.get("dimensions", d.dimensions)),
            batch_size=int(e.get("batch_size", d.batch_size)),
            max_input_chars=int(e.get("max_input_chars", d.max_input_chars)),
            max_retries=int(e.get("max_retries", d.max_retries)),
            backoff_base=float(e.get("backoff_base", d.backoff_base)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        d = cfg.generation
        cfg.generation = GenerationCfg(
            model=str(g.get("model", d.model)),
            api_url=str(g.get("api_url", d.api_url)),
            api_version=str(g.get("api_version", d.api_version)),
            max_tokens=int(g.get("max_tokens", d.max_tokens)),
            temperature=float(g.get("temperature", d.temperature)),
            timeout=float(g.get("timeout", d.timeout)),
        )

    if "classifier" in data:
        c = data["classifier"] or {}
        cfg.classifier = ClassifierCfg(
            model=str(c.get("model", cfg.classifier.model)),
            max_tokens=int(c.get("max_tokens", cfg.classifier.max_tokens)),
        )

    if "chunking" in data:
        ch = data["chunking"] or {}
        d = cfg.chunking
        cfg.chunking = ChunkingCfg(
            max_tokens=int(ch.get("max_tokens", d.max_tokens)),
            overlap_sentences=int(ch.get("overlap_sentences", d.overlap_sentences)),
            hard_token_cap=int(ch.get("hard_token_cap", d.hard_token_cap)),
            force_split_words=int(ch.get("force_split_words", d.force_split_words)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            match_count=int(r.get("match_count", d.match_count)),
            match_threshold=float(r.get("match_threshold", d.match_threshold)),
            chat_match_count=int(r.get("chat_match_count", d.chat_match_count)),
            chat_match_threshold=float(r.get("chat_match_threshold", d.chat_match_threshold)),
        )

    if "ingestion" in data:
        i = data["ingestion"] or {}
        cfg.ingestion = IngestionCfg(workers=int(i.get("workers", cfg.ingestion.workers)))

    return cfg


def _apply_env_overrides(cfg: CompassConfig) -> CompassConfig:
    """Apply COMPASS_* environment variable overrides (layer 2)."""
    if model := os.environ.get("COMPASS_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("COMPASS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("COMPASS_CLASSIFIER_MODEL"):
        cfg.classifier.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CompassConfig:
    """Load and return a merged *CompassConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *compass.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *CompassConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg
