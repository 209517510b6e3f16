"""Shared pytest fixtures."""

from __future__ import annotations

import base64
import logging

import pytest

from clinirag.db.connection import Database
from clinirag.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".clinirag.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep user config files and CLINIRAG_* env vars out of every test."""
    monkeypatch.setattr("clinirag.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.delenv("CLINIRAG_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("CLINIRAG_DB_PATH", raising=False)
    yield
    # setup_logging() detaches the package logger from the root; undo for caplog.
    pkg_logger = logging.getLogger("clinirag")
    pkg_logger.handlers.clear()
    pkg_logger.propagate = True
    pkg_logger.setLevel(logging.NOTSET)


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


DIABETES_NOTE = (
    "Patient presents with uncontrolled diabetes. Blood glucose levels consistently "
    "above 200 mg/dL. Patient reports difficulty with medication adherence."
)


def make_bundle_dict(
    notes: list[str] | None = None,
    patient_id: str = "patient-1",
    bundle_id: str = "bundle-1",
) -> dict:
    """A FHIR bundle with one Patient and one DocumentReference per note text."""
    notes = [DIABETES_NOTE] if notes is None else notes
    entries = [{"resource": {"resourceType": "Patient", "id": patient_id}}]
    for i, text in enumerate(notes):
        entries.append(
            {
                "resource": {
                    "resourceType": "DocumentReference",
                    "id": f"doc-{i}",
                    "date": "2024-03-0{}T10:00:00Z".format(i % 9 + 1),
                    "type": {"text": "Progress note"},
                    "author": [{"display": "Dr. Rivera"}],
                    "custodian": {"display": "Springfield Clinic"},
                    "content": [{"attachment": {"contentType": "text/plain", "data": b64(text)}}],
                }
            }
        )
    return {"resourceType": "Bundle", "id": bundle_id, "type": "collection", "entry": entries}


@pytest.fixture
def make_bundle():
    return make_bundle_dict


@pytest.fixture
def diabetes_note():
    return DIABETES_NOTE
