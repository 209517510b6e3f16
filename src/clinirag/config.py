"""clinirag configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not in this module)
  2. Environment variables  (CLINIRAG_EMBEDDING_MODEL, CLINIRAG_DB_PATH)
  3. Per-project clinirag.yaml
  4. Global ~/.clinirag/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from clinirag.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".clinirag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "clinirag.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Not max_tokens or min_similarity.
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
    ["embedding", "sanitizer", "chunking", "store", "retrieval", "logging"]
)

# Pre-clean floors per sanitizer profile. The post-clean floor is shared.
SANITIZER_PROFILES: dict[str, int] = {
    "permissive": 20,
    "strict": 100,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ConfigurationError, ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (clinirag.yaml: embedding:)."""

    model: str = "gemini/text-embedding-004"
    dimensions: int = 768
    batch_size: int = 100
    max_retries: int = 3
    retry_backoff: float = 5.0
    mock: bool = False
    mock_seed: int = 0


@dataclass
class SanitizerCfg:
    """Text sanitizer thresholds (clinirag.yaml: sanitizer:).

    ``min_raw_length`` defaults to the floor of the selected ``profile``.
    """

    profile: str = "permissive"
    min_raw_length: int = SANITIZER_PROFILES["permissive"]
    min_clean_length: int = 50


@dataclass
class ChunkingCfg:
    """Character window size and overlap (clinirag.yaml: chunking:)."""

    size: int = 1000
    overlap: int = 200


@dataclass
class StoreCfg:
    """Vector store location and write batching (clinirag.yaml: store:)."""

    path: str = ".clinirag.db"
    upsert_batch_size: int = 100


@dataclass
class RetrievalCfg:
    """Retrieval defaults (clinirag.yaml: retrieval:)."""

    limit: int = 5
    min_similarity: float = 0.5


@dataclass
class LoggingCfg:
    level: str = "INFO"
    file: str | None = None


@dataclass
class CliniragConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    sanitizer: SanitizerCfg = field(default_factory=SanitizerCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    store: StoreCfg = field(default_factory=StoreCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
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
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: CliniragConfig) -> None:
    """Raise ConfigError on values the pipeline cannot run with."""
    if cfg.sanitizer.profile not in SANITIZER_PROFILES:
        raise ConfigError(
            f"Unknown sanitizer profile '{cfg.sanitizer.profile}'. "
            f"Choose one of: {', '.join(sorted(SANITIZER_PROFILES))}"
        )
    if cfg.sanitizer.min_raw_length < 0:
        raise ConfigError("sanitizer.min_raw_length must be >= 0")
    if cfg.sanitizer.min_clean_length < 1:
        raise ConfigError("sanitizer.min_clean_length must be >= 1")
    if cfg.chunking.overlap < 0 or cfg.chunking.size <= cfg.chunking.overlap:
        raise ConfigError(
            f"chunking.size ({cfg.chunking.size}) must be greater than "
            f"chunking.overlap ({cfg.chunking.overlap}) and overlap must be >= 0"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")
    if cfg.embedding.batch_size < 1:
        raise ConfigError("embedding.batch_size must be >= 1")
    if cfg.embedding.max_retries < 0:
        raise ConfigError("embedding.max_retries must be >= 0")
    if cfg.store.upsert_batch_size < 1:
        raise ConfigError("store.upsert_batch_size must be >= 1")
    if not 0.0 <= cfg.retrieval.min_similarity < 1.0:
        raise ConfigError("retrieval.min_similarity must be in [0.0, 1.0)")
    if cfg.retrieval.limit < 1:
        raise ConfigError("retrieval.limit must be >= 1")


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


def _cfg_from_dict(data: dict[str, Any]) -> CliniragConfig:
    """Build a *CliniragConfig* from a merged raw YAML dict."""
    cfg = CliniragConfig()

    try:
        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
                batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
                max_retries=int(e.get("max_retries", cfg.embedding.max_retries)),
                retry_backoff=float(e.get("retry_backoff", cfg.embedding.retry_backoff)),
                mock=bool(e.get("mock", cfg.embedding.mock)),
                mock_seed=int(e.get("mock_seed", cfg.embedding.mock_seed)),
            )

        if "sanitizer" in data:
            s = data["sanitizer"] or {}
            profile = str(s.get("profile", cfg.sanitizer.profile))
            cfg.sanitizer = SanitizerCfg(
                profile=profile,
                min_raw_length=int(
                    s.get("min_raw_length", SANITIZER_PROFILES.get(profile, 20))
                ),
                min_clean_length=int(
                    s.get("min_clean_length", cfg.sanitizer.min_clean_length)
                ),
            )

        if "chunking" in data:
            c = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                size=int(c.get("size", cfg.chunking.size)),
                overlap=int(c.get("overlap", cfg.chunking.overlap)),
            )

        if "store" in data:
            st = data["store"] or {}
            cfg.store = StoreCfg(
                path=str(st.get("path", cfg.store.path)),
                upsert_batch_size=int(
                    st.get("upsert_batch_size", cfg.store.upsert_batch_size)
                ),
            )

        if "retrieval" in data:
            r = data["retrieval"] or {}
            cfg.retrieval = RetrievalCfg(
                limit=int(r.get("limit", cfg.retrieval.limit)),
                min_similarity=float(
                    r.get("min_similarity", cfg.retrieval.min_similarity)
                ),
            )

        if "logging" in data:
            lg = data["logging"] or {}
            cfg.logging = LoggingCfg(
                level=str(lg.get("level", cfg.logging.level)),
                file=lg.get("file") or cfg.logging.file,
            )
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: CliniragConfig) -> CliniragConfig:
    """Apply CLINIRAG_* environment variable overrides (layer 2)."""
    if model := os.environ.get("CLINIRAG_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("CLINIRAG_DB_PATH"):
        cfg.store.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CliniragConfig:
    """Load and return a merged, validated *CliniragConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *clinirag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or any
            value is out of range.
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

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    validate_config(cfg)
    return cfg
