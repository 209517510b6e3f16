"""Tests for resource-to-text extraction."""

from __future__ import annotations

import base64
import logging

from clinirag.ingest.extractor import extract, find_subject
from clinirag.ingest.resources import DocumentBundle


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _bundle(*resources, bundle_id="bundle-1"):
    return DocumentBundle(bundle_id=bundle_id, entries=list(resources))


_PATIENT = {"resourceType": "Patient", "id": "patient-1"}


def _doc_ref(text="Follow-up visit for hypertension.", **extra):
    res = {
        "resourceType": "DocumentReference",
        "id": "doc-1",
        "date": "2024-03-01T10:00:00Z",
        "type": {"text": "Progress note"},
        "author": [{"display": "Dr. Rivera"}],
        "custodian": {"display": "Springfield Clinic"},
        "content": [{"attachment": {"data": _b64(text)}}],
    }
    res.update(extra)
    return res


# ------------------------------------------------------------------
# Subject
# ------------------------------------------------------------------


def test_no_patient_yields_nothing(caplog):
    with caplog.at_level(logging.WARNING):
        assert extract(_bundle(_doc_ref())) == []
    assert "no Patient" in caplog.text


def test_first_patient_wins_with_warning(caplog):
    second = {"resourceType": "Patient", "id": "patient-2"}
    with caplog.at_level(logging.WARNING):
        notes = extract(_bundle(_PATIENT, second, _doc_ref()))
    assert notes[0].subject_id == "patient-1"
    assert "2 Patient resources" in caplog.text


def test_patient_without_id_gets_synthesized_id():
    assert find_subject(_bundle({"resourceType": "Patient"})) == "Patient-0"


# ------------------------------------------------------------------
# DocumentReference
# ------------------------------------------------------------------


def test_document_reference_decoded_with_attribution():
    notes = extract(_bundle(_PATIENT, _doc_ref("BP 150/95, started lisinopril.")))
    assert len(notes) == 1
    note = notes[0]
    assert note.raw_text == "BP 150/95, started lisinopril."
    assert note.note_id == "doc-1"
    assert note.subject_id == "patient-1"
    assert note.source_bundle_id == "bundle-1"
    assert note.note_type == "Progress note"
    assert note.authoring_party == "Dr. Rivera"
    assert note.organization == "Springfield Clinic"
    assert note.timestamp == "2024-03-01T10:00:00Z"


def test_document_reference_type_falls_back_to_coding_then_kind():
    coded = _doc_ref(type={"coding": [{"display": "Discharge summary"}]})
    untyped = _doc_ref(id="doc-2")
    del untyped["type"]
    notes = extract(_bundle(_PATIENT, coded, untyped))
    assert [n.note_type for n in notes] == ["Discharge summary", "DocumentReference"]


def test_document_reference_defaults():
    res = _doc_ref()
    del res["author"], res["custodian"], res["date"], res["id"]
    note = extract(_bundle(_PATIENT, res))[0]
    assert note.authoring_party == "Unknown"
    assert note.organization is None
    assert note.timestamp is None
    assert note.note_id == "DocumentReference-1"


def test_document_reference_without_attachment_data_skipped():
    res = _doc_ref()
    res["content"] = [{"attachment": {"url": "http://example.org/doc"}}]
    assert extract(_bundle(_PATIENT, res)) == []


def test_bad_base64_is_skipped_and_scan_continues(caplog):
    bad = _doc_ref(id="bad")
    bad["content"] = [{"attachment": {"data": "abc"}}]  # incorrect padding
    good = _doc_ref(id="good")
    with caplog.at_level(logging.WARNING):
        notes = extract(_bundle(_PATIENT, bad, good))
    assert [n.note_id for n in notes] == ["good"]
    assert "entry 1" in caplog.text


def test_invalid_utf8_is_skipped():
    bad = _doc_ref(id="bad")
    bad["content"] = [{"attachment": {"data": base64.b64encode(b"\xff\xfe\xfa").decode()}}]
    assert extract(_bundle(_PATIENT, bad)) == []


def test_wrong_shape_is_skipped():
    bad = _doc_ref(id="bad", author="Dr. Nobody")
    bad["content"] = "oops"
    good = _doc_ref(id="good")
    assert [n.note_id for n in extract(_bundle(_PATIENT, bad, good))] == ["good"]


# ------------------------------------------------------------------
# DiagnosticReport
# ------------------------------------------------------------------


def test_diagnostic_report_narrative():
    report = {
        "resourceType": "DiagnosticReport",
        "id": "dr-1",
        "effectiveDateTime": "2024-02-01",
        "issued": "2024-02-03",
        "code": {"text": "Chest X-ray"},
        "performer": [{"display": "Radiology"}],
        "text": {"div": "<div><p>No acute findings.</p></div>"},
    }
    note = extract(_bundle(_PATIENT, report))[0]
    assert note.raw_text == "<div><p>No acute findings.</p></div>"
    assert note.timestamp == "2024-02-01"
    assert note.note_type == "Chest X-ray"
    assert note.authoring_party == "Radiology"


def test_diagnostic_report_falls_back_to_presented_form_then_conclusion():
    presented = {
        "resourceType": "DiagnosticReport",
        "id": "dr-pf",
        "issued": "2024-02-03",
        "presentedForm": [{"data": _b64("Echo: EF 55 percent.")}],
    }
    concluded = {"resourceType": "DiagnosticReport", "id": "dr-c", "conclusion": "Mild anemia."}
    notes = extract(_bundle(_PATIENT, presented, concluded))
    assert [n.raw_text for n in notes] == ["Echo: EF 55 percent.", "Mild anemia."]
    assert notes[0].timestamp == "2024-02-03"
    assert notes[1].note_type == "DiagnosticReport"
    assert notes[1].authoring_party == "Unknown"


def test_diagnostic_report_without_text_skipped():
    assert extract(_bundle(_PATIENT, {"resourceType": "DiagnosticReport", "id": "x"})) == []


# ------------------------------------------------------------------
# Observation
# ------------------------------------------------------------------


def test_observation_annotations_joined():
    obs = {
        "resourceType": "Observation",
        "id": "obs-1",
        "issued": "2024-04-01",
        "note": [{"text": "Patient reports dizziness."}, {"text": "Recheck in 2 weeks."}],
    }
    note = extract(_bundle(_PATIENT, obs))[0]
    assert note.raw_text == "Patient reports dizziness.\nRecheck in 2 weeks."
    assert note.note_type == "Observation Note"
    assert note.timestamp == "2024-04-01"


def test_observation_without_annotations_skipped():
    obs = {"resourceType": "Observation", "id": "obs-1", "valueQuantity": {"value": 5}}
    assert extract(_bundle(_PATIENT, obs)) == []


def test_unsupported_resources_ignored():
    enc = {"resourceType": "Encounter", "id": "enc-1", "text": {"div": "<div>Visit</div>"}}
    assert extract(_bundle(_PATIENT, enc, {})) == []


def test_notes_follow_bundle_order():
    obs = {"resourceType": "Observation", "id": "obs", "note": [{"text": "obs text"}]}
    notes = extract(_bundle(_PATIENT, obs, _doc_ref(id="doc")))
    assert [n.note_id for n in notes] == ["obs", "doc"]
