"""Bundle loading and the typed resource union the extractor dispatches on.

Raw FHIR entries are parsed into one of four frozen dataclasses. Only the
fields the extractor reads are kept; everything else in the resource is
ignored. ``UnsupportedResource`` covers every other kind (Patient included).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from clinirag.exceptions import BundleSourceError


# ------------------------------------------------------------------
# Bundle
# ------------------------------------------------------------------


@dataclass
class DocumentBundle:
    """A FHIR Bundle reduced to its id and ordered entry resources.

    Entries whose ``resource`` is missing or not an object are kept as empty
    dicts so that entry indices stay aligned with the source file.
    """

    bundle_id: str
    entries: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], fallback_id: str = "bundle") -> DocumentBundle:
        raw_entries = data.get("entry") or []
        if not isinstance(raw_entries, list):
            raise BundleSourceError(f"Bundle '{fallback_id}': 'entry' must be a list")
        entries: list[dict[str, Any]] = []
        for entry in raw_entries:
            resource = entry.get("resource") if isinstance(entry, dict) else None
            entries.append(resource if isinstance(resource, dict) else {})
        bundle_id = data.get("id")
        return cls(
            bundle_id=bundle_id if isinstance(bundle_id, str) and bundle_id else fallback_id,
            entries=entries,
        )


def load_bundle(path: Path | str) -> DocumentBundle:
    """Read a FHIR Bundle JSON file.

    The bundle id falls back to the file stem when the bundle has no ``id``.

    Raises:
        BundleSourceError: If the file is missing, unreadable, not valid JSON,
            or does not hold a JSON object.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise BundleSourceError(f"Bundle file not found: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise BundleSourceError(f"Cannot read bundle file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise BundleSourceError(f"Bundle file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise BundleSourceError(f"Bundle file {path} does not contain a JSON object")
    return DocumentBundle.from_dict(data, fallback_id=path.stem)


# ------------------------------------------------------------------
# Notes
# ------------------------------------------------------------------


@dataclass
class CandidateNote:
    """Raw note text plus attribution, before sanitizing."""

    note_id: str
    subject_id: str
    source_bundle_id: str
    raw_text: str
    note_type: str = "Unknown"
    authoring_party: str = "Unknown"
    timestamp: str | None = None
    organization: str | None = None


@dataclass
class SanitizedNote(CandidateNote):
    """A CandidateNote after the sanitizer ran.

    ``disposition`` is ``"accepted"`` or ``"rejected:<reason>"``.
    """

    clean_text: str = ""
    disposition: str = "accepted"

    @property
    def accepted(self) -> bool:
        return self.disposition == "accepted"

    @property
    def rejection_reason(self) -> str | None:
        if self.accepted:
            return None
        return self.disposition.partition(":")[2]


# ------------------------------------------------------------------
# Resource union
# ------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentReferenceResource:
    resource_id: str | None
    date: str | None = None
    type_text: str | None = None
    type_coding_display: str | None = None
    author_display: str | None = None
    custodian_display: str | None = None
    attachment_data: str | None = None  # first base64 payload in content[]


@dataclass(frozen=True)
class DiagnosticReportResource:
    resource_id: str | None
    effective: str | None = None
    issued: str | None = None
    code_text: str | None = None
    performer_display: str | None = None
    narrative: str | None = None  # text.div markup
    presented_form_data: str | None = None
    conclusion: str | None = None


@dataclass(frozen=True)
class ObservationResource:
    resource_id: str | None
    effective: str | None = None
    issued: str | None = None
    code_text: str | None = None
    performer_display: str | None = None
    annotations: tuple[str, ...] = ()


@dataclass(frozen=True)
class UnsupportedResource:
    resource_type: str | None
    resource_id: str | None = None


Resource = Union[
    DocumentReferenceResource,
    DiagnosticReportResource,
    ObservationResource,
    UnsupportedResource,
]


def parse_resource(raw: dict[str, Any]) -> Resource:
    """Parse one raw resource dict into the typed union.

    Raises:
        ValueError: If a field the extractor needs has the wrong shape
            (e.g. ``content`` that is not a list).
    """
    resource_type = raw.get("resourceType")
    resource_id = _str(raw.get("id"))

    if resource_type == "DocumentReference":
        doc_type = _obj(raw, "type")
        attachment_data = None
        for content in _list(raw, "content"):
            attachment = _obj(content, "attachment") if isinstance(content, dict) else {}
            attachment_data = _str(attachment.get("data"))
            if attachment_data:
                break
        return DocumentReferenceResource(
            resource_id=resource_id,
            date=_str(raw.get("date")),
            type_text=_str(doc_type.get("text")),
            type_coding_display=_first_display(_list(doc_type, "coding")),
            author_display=_first_display(_list(raw, "author")),
            custodian_display=_str(_obj(raw, "custodian").get("display")),
            attachment_data=attachment_data,
        )

    if resource_type == "DiagnosticReport":
        presented = None
        for form in _list(raw, "presentedForm"):
            if isinstance(form, dict) and _str(form.get("data")):
                presented = form["data"]
                break
        return DiagnosticReportResource(
            resource_id=resource_id,
            effective=_str(raw.get("effectiveDateTime")),
            issued=_str(raw.get("issued")),
            code_text=_str(_obj(raw, "code").get("text")),
            performer_display=_first_display(_list(raw, "performer")),
            narrative=_str(_obj(raw, "text").get("div")),
            presented_form_data=presented,
            conclusion=_str(raw.get("conclusion")),
        )

    if resource_type == "Observation":
        annotations = tuple(
            n["text"]
            for n in _list(raw, "note")
            if isinstance(n, dict) and isinstance(n.get("text"), str) and n["text"].strip()
        )
        return ObservationResource(
            resource_id=resource_id,
            effective=_str(raw.get("effectiveDateTime")),
            issued=_str(raw.get("issued")),
            code_text=_str(_obj(raw, "code").get("text")),
            performer_display=_first_display(_list(raw, "performer")),
            annotations=annotations,
        )

    return UnsupportedResource(
        resource_type=resource_type if isinstance(resource_type, str) else None,
        resource_id=resource_id,
    )


# ------------------------------------------------------------------
# Field helpers
# ------------------------------------------------------------------


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _obj(parent: dict[str, Any], key: str) -> dict[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


def _list(parent: dict[str, Any], key: str) -> list[Any]:
    value = parent.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list, got {type(value).__name__}")
    return value


def _first_display(items: list[Any]) -> str | None:
    if items and isinstance(items[0], dict):
        return _str(items[0].get("display"))
    return None
