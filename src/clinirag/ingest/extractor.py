"""Resource-to-text extraction: one CandidateNote per text-bearing resource."""

from __future__ import annotations

import base64
import logging

from clinirag.ingest.resources import (
    CandidateNote,
    DiagnosticReportResource,
    DocumentBundle,
    DocumentReferenceResource,
    ObservationResource,
    Resource,
    UnsupportedResource,
    parse_resource,
)

logger = logging.getLogger(__name__)


def extract(bundle: DocumentBundle) -> list[CandidateNote]:
    """Return candidate notes for every text-bearing resource in *bundle*.

    Notes are attributed to the bundle's Patient. A bundle without one yields
    no notes. A resource that fails to parse or decode is logged and skipped;
    it never aborts the scan.
    """
    subject_id = find_subject(bundle)
    if subject_id is None:
        logger.warning("Bundle %s has no Patient resource; skipping", bundle.bundle_id)
        return []

    notes: list[CandidateNote] = []
    for index, raw in enumerate(bundle.entries):
        try:
            note = _to_note(parse_resource(raw), index, subject_id, bundle.bundle_id)
        except (ValueError, TypeError) as exc:
            logger.warning(
                "Skipping %s at entry %d of bundle %s: %s",
                raw.get("resourceType", "resource"),
                index,
                bundle.bundle_id,
                exc,
            )
            continue
        if note is not None:
            notes.append(note)

    logger.debug("Extracted %d candidate notes from bundle %s", len(notes), bundle.bundle_id)
    return notes


def find_subject(bundle: DocumentBundle) -> str | None:
    """Return the id of the first Patient resource, or None if there is none."""
    patients = [
        (i, r) for i, r in enumerate(bundle.entries) if r.get("resourceType") == "Patient"
    ]
    if not patients:
        return None
    if len(patients) > 1:
        logger.warning(
            "Bundle %s has %d Patient resources; attributing notes to the first",
            bundle.bundle_id,
            len(patients),
        )
    index, patient = patients[0]
    patient_id = patient.get("id")
    return patient_id if isinstance(patient_id, str) and patient_id else f"Patient-{index}"


# ------------------------------------------------------------------
# Per-kind text and attribution
# ------------------------------------------------------------------


def _to_note(
    resource: Resource, index: int, subject_id: str, bundle_id: str
) -> CandidateNote | None:
    if isinstance(resource, UnsupportedResource):
        return None

    if isinstance(resource, DocumentReferenceResource):
        text = _decode(resource.attachment_data) if resource.attachment_data else None
        kind = "DocumentReference"
        note_type = resource.type_text or resource.type_coding_display or kind
        author = resource.author_display
        timestamp = resource.date
        organization = resource.custodian_display
    elif isinstance(resource, DiagnosticReportResource):
        text = resource.narrative
        if not _has_text(text) and resource.presented_form_data:
            text = _decode(resource.presented_form_data)
        if not _has_text(text):
            text = resource.conclusion
        kind = "DiagnosticReport"
        note_type = resource.code_text or kind
        author = resource.performer_display
        timestamp = resource.effective or resource.issued
        organization = None
    elif isinstance(resource, ObservationResource):
        text = "\n".join(resource.annotations) if resource.annotations else None
        kind = "Observation"
        note_type = resource.code_text or "Observation Note"
        author = resource.performer_display
        timestamp = resource.effective or resource.issued
        organization = None
    else:
        raise TypeError(f"Unhandled resource type {type(resource).__name__}")

    if not _has_text(text):
        return None

    return CandidateNote(
        note_id=resource.resource_id or f"{kind}-{index}",
        subject_id=subject_id,
        source_bundle_id=bundle_id,
        raw_text=text,
        note_type=note_type,
        authoring_party=author or "Unknown",
        timestamp=timestamp,
        organization=organization,
    )


def _decode(data: str) -> str:
    """Decode a base64 attachment payload as UTF-8.

    Raises:
        ValueError: On invalid base64 (binascii.Error) or invalid UTF-8.
    """
    return base64.b64decode(data).decode("utf-8")


def _has_text(text: str | None) -> bool:
    return bool(text and text.strip())
