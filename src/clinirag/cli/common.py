"""Helpers shared by the clinirag commands: config, logging, store, gateway."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from clinirag.cli.errors import err_config, err_dimension_mismatch, err_no_api_key
from clinirag.config import CliniragConfig, ConfigError, load_config
from clinirag.db.repository import VectorStore
from clinirag.exceptions import ConfigurationError
from clinirag.logging_config import setup_logging
from clinirag.rag.embeddings import PROVIDER_ENV, EmbeddingGateway, create_gateway

MOCK_MODEL = "mock"


def load_cli_config(console: Console, *, mock: bool = False) -> CliniragConfig:
    """Load config and set up logging; exit 1 on invalid config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if mock:
        cfg.embedding.mock = True
    setup_logging(cfg.logging.level, cfg.logging.file)
    return cfg


def resolve_db(cfg: CliniragConfig, db: Path | None) -> Path:
    return db if db is not None else Path(cfg.store.path)


def store_model(cfg: CliniragConfig) -> str:
    """Vector table key. Mock vectors never share a table with real ones."""
    return MOCK_MODEL if cfg.embedding.mock else cfg.embedding.model


def open_store(console: Console, cfg: CliniragConfig, db_path: Path) -> VectorStore:
    """Open the store for the configured model; exit 1 on a dimension mismatch."""
    try:
        return VectorStore.open(
            db_path,
            store_model(cfg),
            cfg.embedding.dimensions,
            batch_size=cfg.store.upsert_batch_size,
        )
    except ConfigurationError as exc:
        console.print(err_dimension_mismatch(str(exc)))
        raise typer.Exit(1) from exc


def build_gateway(console: Console, cfg: CliniragConfig) -> EmbeddingGateway:
    """Create the configured gateway; exit 1 when the provider key is missing."""
    try:
        return create_gateway(cfg.embedding)
    except ConfigurationError as exc:
        model = cfg.embedding.model
        provider = model.split("/")[0].lower() if "/" in model else "openai"
        console.print(err_no_api_key(provider, PROVIDER_ENV.get(provider)))
        raise typer.Exit(1) from exc
