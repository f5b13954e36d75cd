"""Tests for impact analysis: state targeting, layered parsing, fallbacks, upsert."""

import json
import random

import pytest
from sqlalchemy import func, select

from policy_whisperer.core.errors import InputError, LLMError, NotFoundError
from policy_whisperer.core.types import IMPACT_LEVELS, Legislation
from policy_whisperer.pipeline.impact import (
    IMPACT_CHAR_LIMIT,
    SAMPLE_STATES,
    STATES,
    ImpactAnalysisService,
    extract_first_json_object,
    parse_impact_response,
    resolve_state_code,
)
from policy_whisperer.retrieval.llm import TRUNCATION_MARKER
from policy_whisperer.storage.models import LegislationImpactRow
from policy_whisperer.storage.repository import LegislationStore

BILL_TEXT = "An Act to modernize the electrical grid and fund rural broadband deployment. " * 3


def _legislation(**kwargs) -> Legislation:
    defaults = {"id": "leg-1", "title": "Grid Act", "level": "federal", "content": BILL_TEXT}
    defaults.update(kwargs)
    return Legislation(**defaults)


def _reply_for_state(messages, **kwargs) -> str:
    """Fake LLM: answers with the state named in the system prompt."""
    system = messages[0]["content"]
    code = next(c for c in STATES if f"({c})" in system)
    return json.dumps({"impactLevel": "medium", "summary": f"Moderate effect on {code}.", "details": "Details."})


class TestResolveStateCode:
    @pytest.mark.parametrize(
        "name,code",
        [("California", "CA"), ("new york", "NY"), ("  NORTH   Dakota ", "ND"), ("tx", "TX"),
         ("District of Columbia", "DC")],
    )
    def test_known(self, name, code):
        assert resolve_state_code(name) == code

    @pytest.mark.parametrize("name", ["Atlantis", "", None, "Puerto Rico", "XX"])
    def test_unknown(self, name):
        assert resolve_state_code(name) is None

    def test_covers_fifty_states_and_dc(self):
        assert len(STATES) == 51


class TestParseImpactResponse:
    def test_direct_json(self):
        fields = parse_impact_response('{"impactLevel": "High", "summary": "S", "details": "D"}')
        assert fields == {"impact_level": "high", "summary": "S", "details": "D"}

    def test_snake_case_level(self):
        assert parse_impact_response('{"impact_level": "low"}')["impact_level"] == "low"

    def test_fenced_json(self):
        fields = parse_impact_response('```json\n{"impactLevel": "neutral", "summary": "S"}\n```')
        assert fields["impact_level"] == "neutral"
        assert fields["details"] is None

    def test_embedded_json(self):
        content = 'Sure! Here is the analysis:\n{"impactLevel": "low", "summary": "Uses {braces}", "details": "D"}\nThanks.'
        fields = parse_impact_response(content)
        assert fields["impact_level"] == "low"
        assert fields["summary"] == "Uses {braces}"

    def test_unknown_level_normalized(self):
        assert parse_impact_response('{"impactLevel": "catastrophic"}')["impact_level"] == "unknown"

    def test_prose_fallback(self):
        content = (
            "Impact level: High\n"
            "Summary: Significant new compliance costs for utilities.\n"
            "Details: Utilities must upgrade substations within five years."
        )
        fields = parse_impact_response(content)
        assert fields["impact_level"] == "high"
        assert fields["summary"] == "Significant new compliance costs for utilities."
        assert fields["details"] == "Utilities must upgrade substations within five years."

    def test_prose_level_phrase(self):
        fields = parse_impact_response("This bill would have a low impact on the state budget.")
        assert fields["impact_level"] == "low"

    def test_nothing_recognizable(self):
        assert parse_impact_response("I am unable to help with that request.") is None


class TestExtractFirstJsonObject:
    def test_skips_invalid_candidate(self):
        assert extract_first_json_object('{not json} then {"a": 1}') == {"a": 1}

    def test_nested(self):
        assert extract_first_json_object('x {"a": {"b": [1, 2]}} y') == {"a": {"b": [1, 2]}}

    def test_escaped_quote_in_string(self):
        assert extract_first_json_object(r'{"s": "he said \"}\""}') == {"s": 'he said "}"'}

    def test_unbalanced(self):
        assert extract_first_json_object('{"a": 1') is None


class TestTargetStates:
    def setup_method(self):
        self.service = ImpactAnalysisService(store=None, llm=None)

    def test_federal_defaults_to_sample(self):
        assert self.service.target_states(_legislation()) == list(SAMPLE_STATES)

    def test_state_legislation_uses_own_state(self):
        assert self.service.target_states(_legislation(level="state", state="Texas")) == ["TX"]

    def test_unrecognized_state_yields_nothing(self):
        assert self.service.target_states(_legislation(level="state", state="Gondor")) == []

    def test_explicit_code_wins(self):
        assert self.service.target_states(_legislation(), "fl") == ["FL"]

    def test_invalid_explicit_code(self):
        with pytest.raises(InputError):
            self.service.target_states(_legislation(), "ZZ")


class TestMockAssessment:
    def test_fields_populated(self):
        service = ImpactAnalysisService(store=None, llm=None, rng=random.Random(7))
        for _ in range(20):
            result = service.mock_assessment(_legislation(), "NY")
            assert result.impact_level in ("high", "medium", "low", "neutral")
            assert result.summary and result.details
            assert result.is_fallback is True
            assert "New York" in result.summary


class TestImpactAnalysisService:
    async def _create(self, session, **kwargs) -> Legislation:
        fields = {"title": "Grid Act", "content": BILL_TEXT, "level": "federal"}
        fields.update(kwargs)
        return await LegislationStore(session).create_legislation(**fields)

    async def test_federal_analyzes_five_sample_states(self, session, llm):
        legislation = await self._create(session)
        llm.complete.side_effect = _reply_for_state

        results = await ImpactAnalysisService(LegislationStore(session), llm).analyze(legislation.id)

        assert [r.state_code for r in results] == list(SAMPLE_STATES)
        assert all(r.impact_level == "medium" and not r.is_fallback for r in results)
        stored = await LegislationStore(session).list_impacts(legislation.id)
        assert sorted(i.state_code for i in stored) == sorted(SAMPLE_STATES)

    async def test_always_failing_llm_uses_mock(self, session, llm):
        legislation = await self._create(session)

        results = await ImpactAnalysisService(LegislationStore(session), llm).analyze(legislation.id)

        assert len(results) == 5
        for r in results:
            assert r.impact_level in IMPACT_LEVELS
            assert r.summary.strip() and r.details.strip()
            assert r.is_fallback is True

    async def test_partial_failure_isolated(self, session, llm):
        """One state's failure does not affect the others."""
        legislation = await self._create(session)

        async def flaky(messages, **kwargs):
            if "(TX)" in messages[0]["content"]:
                raise LLMError("timeout")
            return _reply_for_state(messages)

        llm.complete.side_effect = flaky
        results = await ImpactAnalysisService(LegislationStore(session), llm).analyze(legislation.id)

        by_state = {r.state_code: r for r in results}
        assert by_state["TX"].is_fallback is True
        assert all(not r.is_fallback for code, r in by_state.items() if code != "TX")

    async def test_missing_summary_gets_template(self, session, llm):
        legislation = await self._create(session)
        llm.complete.side_effect = None
        llm.complete.return_value = '{"impactLevel": "high"}'

        results = await ImpactAnalysisService(LegislationStore(session), llm).analyze(legislation.id, "CA")

        assert results[0].summary == "Impact analysis for California is available."
        assert "California" in results[0].details
        assert results[0].is_fallback is False

    async def test_reanalysis_upserts_single_row(self, session, llm):
        legislation = await self._create(session)
        store = LegislationStore(session)
        service = ImpactAnalysisService(store, llm)
        llm.complete.side_effect = [
            '{"impactLevel": "low", "summary": "first", "details": "d1"}',
            '{"impactLevel": "high", "summary": "second", "details": "d2"}',
        ]

        await service.analyze(legislation.id, "CA")
        first = await store.get_impact(legislation.id, "CA")
        await service.analyze(legislation.id, "CA")
        second = await store.get_impact(legislation.id, "CA")

        count = await session.scalar(
            select(func.count()).select_from(LegislationImpactRow).where(
                LegislationImpactRow.legislation_id == legislation.id,
                LegislationImpactRow.state_code == "CA",
            )
        )
        assert count == 1
        assert second.id == first.id
        assert second.updated_at > first.updated_at
        assert (second.impact_level, second.summary) == ("high", "second")

    async def test_store_results_false(self, session, llm):
        legislation = await self._create(session)
        store = LegislationStore(session)

        results = await ImpactAnalysisService(store, llm).analyze(legislation.id, store_results=False)

        assert len(results) == 5
        assert await store.list_impacts(legislation.id) == []

    async def test_state_legislation(self, session, llm):
        legislation = await self._create(session, level="state", state="florida")
        results = await ImpactAnalysisService(LegislationStore(session), llm).analyze(legislation.id)
        assert [r.state_code for r in results] == ["FL"]

    async def test_content_truncated_in_prompt(self, session, llm):
        legislation = await self._create(session, content="z" * (IMPACT_CHAR_LIMIT + 100))
        await ImpactAnalysisService(LegislationStore(session), llm).analyze(legislation.id, "IL")

        user_content = llm.complete.call_args.args[0][1]["content"]
        assert user_content.endswith(TRUNCATION_MARKER)
        assert "Grid Act" in user_content

    async def test_unknown_legislation(self, session, llm):
        with pytest.raises(NotFoundError):
            await ImpactAnalysisService(LegislationStore(session), llm).analyze("missing-id")
