"""Multi-stage text sanitizer for extracted clinical notes.

Generated notes often carry template scaffolding: bracketed placeholders,
writer instructions, model preambles, disclaimers, markdown and "empty" field
labels. The sanitizer strips markup, rejects notes that are nothing but a
template, removes artifacts with an ordered list of named rules, and gates
the result on length before and after cleaning.

Stages:
  1. pre-length gate on the trimmed raw text      -> "too short"
  2. markup strip (BeautifulSoup, html.parser)
  3. pure-template marker check                   -> "pure template"
  4. CLEANING_RULES, in order, each replacing matches with a space
     (a few rewrite rules substitute fixed wording instead)
  5. whitespace normalization
  6. post-length gate                             -> "too short after cleaning"
"""

from __future__ import annotations

import logging
import re
import warnings
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from clinirag.ingest.resources import CandidateNote, SanitizedNote

logger = logging.getLogger(__name__)

REASON_TOO_SHORT = "too short"
REASON_PURE_TEMPLATE = "pure template"
REASON_TOO_SHORT_AFTER_CLEANING = "too short after cleaning"

DEFAULT_TEMPLATE_MARKERS: tuple[str, ...] = (
    "[list any specific symptoms",
    "Please provide details about:",
    "Okay, here is a medical note template for a patient",
    "The patient presents today for an encounter related to a problem for",
)

DEFAULT_JUNK_PHRASES: tuple[str, ...] = (
    "Reason for Visit: General examination of patient for .",
    "Chief Complaint: General examination for .",
    "Reason for Encounter: General examination of patient for .",
    "He reports , which may be caused by .",
    "Symptoms reported (if any) may be related to .",
    "Plan: - Advised on .",
    "The patient reports .",
    "Patient reports: .",
    "The patient reports experiencing for .",
    "The patient reports no specific complaints at this time.",
    "No specific complaints reported at this time.",
    "No specific acute complaints reported at this time.",
    "No acute complaints were reported.",
    "No acute symptoms were reported.",
    "No new symptoms or concerns.",
    "He denies any acute distress or significant changes in health status.",
)

_WHITESPACE_RE = re.compile(r"\s+")


# ------------------------------------------------------------------
# Rules
# ------------------------------------------------------------------


@dataclass(frozen=True)
class CleaningRule:
    """A named artifact pattern; every match is replaced with ``replacement``."""

    name: str
    pattern: re.Pattern[str]
    replacement: str = " "

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _rule(name: str, pattern: str, flags: int = 0, replacement: str = " ") -> CleaningRule:
    return CleaningRule(name, re.compile(pattern, flags), replacement)


def junk_phrase_rule(phrases: Iterable[str]) -> CleaningRule:
    """Build the rule that deletes literal junk sentences, case-insensitively."""
    alternatives = "|".join(re.escape(p) for p in phrases)
    # An empty alternation would match everywhere.
    return _rule("junk_phrases", alternatives or r"(?!)", re.IGNORECASE)


def build_rules(junk_phrases: Iterable[str] = DEFAULT_JUNK_PHRASES) -> tuple[CleaningRule, ...]:
    """Return the ordered artifact rules with *junk_phrases* as the last rule."""
    return (
        _rule("bracketed_placeholder", r"\[[^\]]+\]"),
        _rule("instruction_if_known", r'\(If known, e\.g\., "[^"]+"\)'),
        _rule("instruction_document_history", r"\(Document any relevant history, e\.g\., [^)]+\)"),
        _rule("instruction_example", r"\(Example: [^)]+\)", re.IGNORECASE),
        _rule(
            "ai_preamble",
            r"^(?:Okay, here is|Certainly![\s\S]*?Below is) a medical note[\s\S]*",
            re.IGNORECASE | re.MULTILINE,
        ),
        _rule("ai_commentary_phrasing", r"This is unusual phrasing,[\s\S]*", re.IGNORECASE),
        _rule("ai_commentary_symptoms", r"Regarding Symptoms Caused by[\s\S]*", re.IGNORECASE),
        _rule(
            "ai_commentary_pending",
            r"\(Note: Specific symptom details are pending[\s\S]*?\)",
            re.IGNORECASE,
        ),
        _rule("disclaimer_template", r"Disclaimer: This note is a template[\s\S]*", re.IGNORECASE),
        _rule(
            "disclaimer_informational",
            r"Disclaimer: This medical note is for informational purposes[\s\S]*",
            re.IGNORECASE,
        ),
        _rule(
            "footer_template_note",
            r"Note: This medical note is a template and should be adjusted[\s\S]*",
        ),
        _rule("scribe_label", r"Medical Scribe"),
        # Needs the asterisks, so it runs before markdown removal.
        _rule("signature_block", r"\*\*\*(?:Provider )?Signature:\*\*[\s\S]*"),
        _rule("markdown", r"\*\*|__|\*|_|---|===|###"),
        _rule("reports_none", r"Reports \.", replacement="Reports none."),
        _rule("symptom_onset", r"Symptoms began \.", replacement="Symptom onset not specified."),
        _rule(
            "symptom_duration",
            r"Duration of Symptoms: \.",
            replacement="Duration not specified.",
        ),
        # One short label per line, or one right after a sentence end.
        _rule(
            "empty_field",
            r"(?:^|(?<=[.;!?]))[ \t]*[A-Z][A-Za-z()/ \t]{0,40}:[ \t]*\.",
            re.MULTILINE,
        ),
        junk_phrase_rule(junk_phrases),
    )


CLEANING_RULES: tuple[CleaningRule, ...] = build_rules()


# ------------------------------------------------------------------
# Sanitizer
# ------------------------------------------------------------------


@dataclass(frozen=True)
class CleanResult:
    """Outcome of cleaning one text: ``clean_text`` or a rejection ``reason``."""

    clean_text: str | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


def strip_markup(text: str) -> str:
    """Return the visible text of *text*; plain text passes through unchanged."""
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
            return BeautifulSoup(text, "html.parser").get_text("\n")
    except Exception as exc:
        logger.debug("Markup parsing failed, using raw text: %s", exc)
        return text


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


class TextSanitizer:
    """Clean note text and decide whether the note is worth embedding.

    Args:
        min_raw_length: Minimum trimmed length of the raw text (20 for the
            permissive profile, 100 for strict).
        min_clean_length: Minimum length after cleaning.
        template_markers: Phrases that mark the whole note as a template.
        junk_phrases: Literal sentences deleted wherever they appear.
    """

    def __init__(
        self,
        min_raw_length: int = 20,
        min_clean_length: int = 50,
        template_markers: Sequence[str] = DEFAULT_TEMPLATE_MARKERS,
        junk_phrases: Sequence[str] = DEFAULT_JUNK_PHRASES,
    ) -> None:
        if min_raw_length < 0:
            raise ValueError("min_raw_length must be >= 0")
        if min_clean_length < 1:
            raise ValueError("min_clean_length must be >= 1")
        self.min_raw_length = min_raw_length
        self.min_clean_length = min_clean_length
        self.template_markers = tuple(template_markers)
        if tuple(junk_phrases) == DEFAULT_JUNK_PHRASES:
            self.rules = CLEANING_RULES
        else:
            self.rules = build_rules(junk_phrases)

    @classmethod
    def from_config(cls, cfg) -> TextSanitizer:
        """Build from a ``SanitizerCfg``."""
        return cls(min_raw_length=cfg.min_raw_length, min_clean_length=cfg.min_clean_length)

    def clean(self, raw_text: str | None) -> CleanResult:
        if not raw_text or len(raw_text.strip()) < self.min_raw_length:
            return CleanResult(reason=REASON_TOO_SHORT)

        text = strip_markup(raw_text)

        if any(marker in text for marker in self.template_markers):
            return CleanResult(reason=REASON_PURE_TEMPLATE)

        for rule in self.rules:
            text = rule.apply(text)

        text = normalize_whitespace(text)

        if len(text) < self.min_clean_length:
            return CleanResult(reason=REASON_TOO_SHORT_AFTER_CLEANING)
        return CleanResult(clean_text=text)

    def sanitize(self, note: CandidateNote) -> SanitizedNote:
        """Clean *note* and attach the disposition."""
        result = self.clean(note.raw_text)
        base = {f.name: getattr(note, f.name) for f in fields(CandidateNote)}
        if result.accepted:
            return SanitizedNote(**base, clean_text=result.clean_text, disposition="accepted")

        logger.debug("Rejected note %s (%s): %s", note.note_id, note.note_type, result.reason)
        return SanitizedNote(**base, clean_text="", disposition=f"rejected:{result.reason}")
