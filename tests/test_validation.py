# FILE: tests/test_validation.py
"""
Tests for collaborator output validation and the local quality gate.
"""

import json
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from maturity.interpretation.errors import MalformedResponseError
from maturity.interpretation.schemas import QualityRating, QuestionType, SectionId
from maturity.interpretation.validation import (
    FALLBACK_MESSAGE,
    OTHER_OPTION,
    assess_quality,
    extract_json_object,
    normalize_question,
    validate_assessment,
    validate_draft,
    validate_final_review,
)

from conftest import make_assessment, make_draft_payload

ALLOWED = {"obj_forecasting", "gate_l2_failed", "obj_budgeting"}


class TestExtractJsonObject:
    """Test JSON extraction from model output."""

    def test_clean_json(self):
        """Test a bare JSON object parses."""
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        """Test a ```json fence is unwrapped."""
        raw = 'Here you go:\n```json\n{"ready": true}\n```\nThanks'
        assert extract_json_object(raw) == {"ready": True}

    def test_leading_and_trailing_prose(self):
        """Test prose around the object is ignored, braces inside strings included."""
        raw = 'Sure. {"gaps": [], "note": "a } inside"} and that is all.'
        assert extract_json_object(raw) == {"gaps": [], "note": "a } inside"}

    def test_no_object(self):
        """Test prose, empty output and arrays give None."""
        assert extract_json_object("nothing here") is None
        assert extract_json_object("") is None
        assert extract_json_object("[1, 2]") is None


class TestValidateDraft:
    """Test generator output validation."""

    def test_clean_draft(self):
        """Test a complete draft parses with no defects."""
        draft = validate_draft(make_draft_payload())
        assert [s.id for s in draft.sections] == list(SectionId)
        assert draft.origin == "parsed"
        assert draft.defects == []

    def test_accepts_json_string(self):
        """Test a JSON string is accepted as well as a dict."""
        draft = validate_draft(json.dumps(make_draft_payload()))
        assert len(draft.sections) == 5

    def test_missing_section_gets_placeholder(self):
        """Test missing sections are filled with the fallback message."""
        payload = make_draft_payload()
        payload["sections"] = payload["sections"][:3]
        draft = validate_draft(payload)
        assert len(draft.sections) == 5
        tail = draft.sections[3:]
        assert all(s.placeholder for s in tail)
        assert all(s.content == FALLBACK_MESSAGE for s in tail)
        assert draft.origin == "fallback"

    def test_empty_content_gets_placeholder(self):
        """Test a blank section becomes a placeholder without touching the others."""
        payload = make_draft_payload()
        payload["sections"][0]["content"] = "   "
        draft = validate_draft(payload)
        assert draft.sections[0].placeholder
        assert not draft.sections[1].placeholder

    def test_sections_as_mapping(self):
        """Test sections keyed by id are accepted."""
        payload = {"sections": {"execution_snapshot": "Text [obj_forecasting]."}}
        draft = validate_draft(payload)
        assert draft.section(SectionId.EXECUTION_SNAPSHOT).content == "Text [obj_forecasting]."

    def test_out_of_order_sections_are_reordered(self):
        """Test sections come back in canonical order."""
        payload = make_draft_payload()
        payload["sections"].reverse()
        draft = validate_draft(payload)
        assert [s.id for s in draft.sections] == list(SectionId)

    def test_unparseable_raises(self):
        """Test prose output is a malformed response."""
        with pytest.raises(MalformedResponseError):
            validate_draft("I could not do that.")

    def test_no_usable_section_raises(self):
        """Test a draft with only blank sections is a malformed response."""
        with pytest.raises(MalformedResponseError):
            validate_draft({"sections": [{"id": "execution_snapshot", "content": ""}]})

    def test_no_sections_key_raises(self):
        """Test an object without sections is a malformed response."""
        with pytest.raises(MalformedResponseError):
            validate_draft({"text": "hello"})


class TestNormalizeQuestion:
    """Test clarifying question normalization."""

    def test_mcq_gets_other_option(self):
        """Test MCQ options always end with Other."""
        q, defect = normalize_question({"type": "mcq", "text": "How often?", "options": ["Weekly", "Monthly"]})
        assert q.type == QuestionType.MCQ
        assert q.options == ["Weekly", "Monthly", OTHER_OPTION]
        assert defect is None

    def test_mcq_truncated_to_four_plus_other(self):
        """Test MCQ options are capped at four plus Other."""
        q, _ = normalize_question({"type": "mcq", "text": "Pick", "options": ["a", "b", "c", "d", "e", "Other"]})
        assert q.options == ["a", "b", "c", "d", OTHER_OPTION]

    def test_mcq_with_one_option_becomes_free_text(self):
        """Test an MCQ without two real options degrades to free text."""
        q, defect = normalize_question({"type": "mcq", "text": "Pick", "options": ["only"]})
        assert q.type == QuestionType.FREE_TEXT
        assert q.options == []
        assert defect

    def test_type_aliases(self):
        """Test type aliases are case-insensitive."""
        q, _ = normalize_question({"type": "Yes/No", "text": "Do you?"})
        assert q.type == QuestionType.YES_NO

    def test_unknown_type_falls_back_to_free_text(self):
        """Test an unknown type is recorded as a defect and asked as free text."""
        q, defect = normalize_question({"type": "slider", "text": "Rate it"})
        assert q.type == QuestionType.FREE_TEXT
        assert "slider" in defect

    def test_no_text_is_dropped(self):
        """Test a question without text is dropped."""
        q, defect = normalize_question({"type": "yes_no"})
        assert q is None
        assert defect


class TestValidateAssessment:
    """Test critic assessment validation."""

    def test_clean(self):
        """Test a well-formed assessment parses."""
        assessment = validate_assessment(make_assessment(2))
        assert assessment.origin == "parsed"
        assert len(assessment.gaps) == 2
        assert len(assessment.generated_questions) == 2

    def test_unparseable_defaults_to_yellow(self):
        """Test prose falls back to an empty yellow assessment."""
        assessment = validate_assessment("the draft looks fine to me")
        assert assessment.overall_quality == QualityRating.YELLOW
        assert assessment.gaps == []
        assert assessment.generated_questions == []
        assert assessment.origin == "fallback"

    def test_bad_quality_and_severity_fall_back(self):
        """Test invalid quality and severity values are defaulted or clamped."""
        payload = {
            "gaps": [{"gap_id": "g", "severity": "very"}, {"gap_id": "h", "severity": 9}],
            "overall_quality": "purple",
        }
        assessment = validate_assessment(payload)
        assert assessment.overall_quality == QualityRating.YELLOW
        assert [g.severity for g in assessment.gaps] == [3, 5]
        assert assessment.origin == "fallback"

    @pytest.mark.parametrize("raw", ['{"gaps":[{"gap_id":"g","severity":1e999}]}', '{"gaps":[{"gap_id":"g","severity":NaN}]}'])
    def test_non_finite_severity_falls_back(self, raw):
        """Test infinite or NaN severities default to 3 instead of raising."""
        assessment = validate_assessment(raw)
        assert [g.severity for g in assessment.gaps] == [3]
        assert assessment.origin == "fallback"

    def test_gaps_not_a_list(self):
        """Test a non-list gaps field is recorded and ignored."""
        assessment = validate_assessment({"gaps": "none", "overall_quality": "green"})
        assert assessment.gaps == []
        assert "gaps is not a list" in assessment.defects

    def test_accepts_questions_alias(self):
        """Test questions is accepted in place of generated_questions."""
        assessment = validate_assessment({"overall_quality": "green", "questions": [{"type": "free_text", "text": "Why?"}]})
        assert len(assessment.generated_questions) == 1


class TestValidateFinalReview:
    """Test critic final review validation."""

    def test_unparseable_is_ready(self):
        """Test an unparseable review is treated as ready."""
        review = validate_final_review("```not json```")
        assert review.ready is True
        assert review.origin == "fallback"

    def test_edits_and_forbidden(self):
        """Test string and object edits are kept and unusable ones dropped."""
        review = validate_final_review({
            "ready": False,
            "edits": ["Tighten section 2", {"section_id": "capacity_check", "instruction": "Shorten"}, 42],
            "forbidden_matches": ["Room For Improvement"],
        })
        assert review.ready is False
        assert [e.instruction for e in review.edits] == ["Tighten section 2", "Shorten"]
        assert review.forbidden_matches == ["room for improvement"]
        assert review.origin == "fallback"

    def test_non_list_edits_are_a_defect(self):
        """Test a scalar edits field is recorded and ignored."""
        review = validate_final_review({"ready": True, "edits": 7})
        assert review.edits == []
        assert review.defects == ["edits is not a list"]
        assert review.origin == "fallback"

    def test_single_string_edit(self):
        """Test a bare string edit becomes one edit, not one per character."""
        review = validate_final_review({"ready": True, "edits": "tighten prose"})
        assert [e.instruction for e in review.edits] == ["tighten prose"]
        assert review.origin == "parsed"

    def test_forbidden_matches_shapes(self):
        """Test a single string is one match and other scalars are a defect."""
        single = validate_final_review({"ready": True, "forbidden_matches": "Could Potentially"})
        assert single.forbidden_matches == ["could potentially"]

        scalar = validate_final_review({"ready": True, "forbidden_matches": {"a": 1}})
        assert scalar.forbidden_matches == []
        assert scalar.defects == ["forbidden_matches is not a list"]


class TestAssessQuality:
    """Test the local final gate."""

    def test_clean_draft_is_green(self):
        """Test a cited, clean draft has no violations."""
        report = assess_quality(validate_draft(make_draft_payload()), ALLOWED)
        assert report.status == QualityRating.GREEN
        assert report.violations == []

    def test_forbidden_phrase_is_hard(self):
        """Test hedging phrases are hard violations."""
        draft = validate_draft(make_draft_payload(extra_text="There is room for improvement."))
        report = assess_quality(draft, ALLOWED)
        assert report.status == QualityRating.RED
        assert {v.code for v in report.hard_violations} == {"forbidden_phrase"}

    def test_unknown_evidence_is_hard(self):
        """Test citing evidence outside the run is a hard violation."""
        draft = validate_draft(make_draft_payload(cite="obj_payroll"))
        report = assess_quality(draft, ALLOWED)
        unknown = [v for v in report.hard_violations if v.code == "unknown_evidence"]
        assert unknown
        assert all("malformed" not in v.detail for v in unknown)

    def test_malformed_evidence_is_named(self):
        """Test a citation that breaks its namespace format is flagged as malformed."""
        draft = validate_draft(make_draft_payload(cite="gate_l2_maybe"))
        report = assess_quality(draft, ALLOWED)
        details = [v.detail for v in report.hard_violations if v.code == "unknown_evidence"]
        assert details
        assert all("(malformed: gate_l2_maybe)" in d for d in details)

    def test_critic_forbidden_match_is_hard(self):
        """Test phrases flagged by the critic are hard violations."""
        report = assess_quality(validate_draft(make_draft_payload()), ALLOWED, ["could potentially"])
        assert report.status == QualityRating.RED

    def test_section_without_citation_is_hard(self):
        """Test every section needs at least one citation."""
        payload = make_draft_payload()
        payload["sections"][2]["content"] = "No citations in this one."
        report = assess_quality(validate_draft(payload), ALLOWED)
        assert any(v.code == "no_evidence" and v.section_id == "strengths_weaknesses" for v in report.violations)

    def test_placeholder_and_word_count_are_soft(self):
        """Test placeholders and long sections only downgrade to yellow."""
        payload = make_draft_payload()
        payload["sections"] = payload["sections"][:4]
        payload["sections"][0]["content"] += " word" * 160
        report = assess_quality(validate_draft(payload), ALLOWED)
        assert report.status == QualityRating.YELLOW
        assert {v.code for v in report.violations} == {"placeholder_section", "word_count"}
        assert report.hard_violations == []
