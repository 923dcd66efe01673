"""Tests for JSON extraction and response contract validation."""

from __future__ import annotations

import json
from datetime import date

import pytest

from tootoo.llm.contract import ContractViolation, extract_json, parse_payload

AS_OF = date(2026, 1, 15)


class TestExtractJson:
    def test_fenced_block(self):
        assert extract_json('```json\n{"a":1}\n```\n') == '{"a":1}'

    def test_bare_fence(self):
        assert extract_json('```\n{"a":1}\n```') == '{"a":1}'

    def test_braces_fallback(self):
        assert extract_json('prefix {"a":1} suffix') == '{"a":1}'

    def test_no_object(self):
        assert extract_json("no json here") is None


class TestParsePayload:
    def test_valid_payload(self, llm_output):
        payload = parse_payload(json.dumps(llm_output()), AS_OF)
        assert len(payload.items) == 20
        assert [i.rank for i in payload.items] == list(range(1, 21))
        assert payload.as_of_date == AS_OF

    def test_fenced_payload(self, llm_output):
        text = f"```json\n{json.dumps(llm_output())}\n```"
        assert len(parse_payload(text, AS_OF).items) == 20

    def test_optional_keys_may_be_missing(self, llm_output):
        data = llm_output()
        for item in data["items"]:
            del item["risk_notes"]
            del item["confidence"]
        payload = parse_payload(json.dumps(data), AS_OF)
        assert payload.items[0].confidence is None

    def test_strings_trimmed_and_blank_risk_notes_nulled(self, llm_output):
        data = llm_output()
        data["items"][0]["ticker"] = "  KRX:000001 "
        data["items"][0]["risk_notes"] = "   "
        payload = parse_payload(json.dumps(data), AS_OF)
        assert payload.items[0].ticker == "KRX:000001"
        assert payload.items[0].risk_notes is None

    def test_wrong_date(self, llm_output):
        with pytest.raises(ContractViolation, match="as_of_date mismatch"):
            parse_payload(json.dumps(llm_output(as_of_date=date(2026, 1, 14))), AS_OF)

    def test_wrong_item_count(self, llm_output):
        with pytest.raises(ContractViolation, match="exactly 20 items"):
            parse_payload(json.dumps(llm_output(count=19)), AS_OF)

    def test_empty_items(self, llm_output):
        data = llm_output()
        data["items"] = []
        with pytest.raises(ContractViolation):
            parse_payload(json.dumps(data), AS_OF, item_count=None)

    def test_item_count_none_accepts_fewer(self, llm_output):
        payload = parse_payload(json.dumps(llm_output(count=5)), AS_OF, item_count=None)
        assert len(payload.items) == 5

    def test_duplicate_rank(self, llm_output):
        data = llm_output()
        data["items"][1]["rank"] = 1
        with pytest.raises(ContractViolation, match="ranks"):
            parse_payload(json.dumps(data), AS_OF)

    def test_rank_gap(self, llm_output):
        data = llm_output()
        data["items"][19]["rank"] = 21
        with pytest.raises(ContractViolation, match="ranks"):
            parse_payload(json.dumps(data), AS_OF)

    def test_duplicate_ticker(self, llm_output):
        data = llm_output()
        data["items"][1]["ticker"] = data["items"][0]["ticker"]
        with pytest.raises(ContractViolation, match="duplicate ticker"):
            parse_payload(json.dumps(data), AS_OF)

    def test_rationale_must_have_three_lines(self, llm_output):
        data = llm_output()
        data["items"][3]["rationale"] = ["only", "two"]
        with pytest.raises(ContractViolation, match="rationale"):
            parse_payload(json.dumps(data), AS_OF)

    def test_blank_rationale_line(self, llm_output):
        data = llm_output()
        data["items"][3]["rationale"] = ["a", " ", "c"]
        with pytest.raises(ContractViolation, match="rationale"):
            parse_payload(json.dumps(data), AS_OF)

    def test_confidence_out_of_range(self, llm_output):
        with pytest.raises(ContractViolation, match="confidence"):
            parse_payload(json.dumps(llm_output(confidence=1.2)), AS_OF)

    def test_empty_name(self, llm_output):
        data = llm_output()
        data["items"][0]["name"] = ""
        with pytest.raises(ContractViolation, match="name is empty"):
            parse_payload(json.dumps(data), AS_OF)

    def test_ticker_outside_candidates(self, llm_output):
        candidates = {f"KRX:{i:06d}" for i in range(1, 20)}
        with pytest.raises(ContractViolation, match="not in the candidate universe"):
            parse_payload(json.dumps(llm_output()), AS_OF, candidate_tickers=candidates)

    def test_not_json(self):
        with pytest.raises(ContractViolation, match="not valid JSON"):
            parse_payload("I cannot help with that.", AS_OF)

    def test_missing_required_key(self, llm_output):
        data = llm_output()
        del data["generated_at"]
        with pytest.raises(ContractViolation, match="generated_at"):
            parse_payload(json.dumps(data), AS_OF)

    def test_collects_multiple_problems(self, llm_output):
        data = llm_output(as_of_date=date(2026, 1, 14))
        data["items"][0]["confidence"] = -1
        with pytest.raises(ContractViolation) as excinfo:
            parse_payload(json.dumps(data), AS_OF)
        assert len(excinfo.value.problems) >= 2


class TestFieldTypes:
    def test_string_rank_rejected(self, llm_output):
        data = llm_output()
        for item in data["items"]:
            item["rank"] = str(item["rank"])
        with pytest.raises(ContractViolation, match="rank"):
            parse_payload(json.dumps(data), AS_OF)

    def test_bool_rank_rejected(self, llm_output):
        data = llm_output()
        data["items"][0]["rank"] = True
        with pytest.raises(ContractViolation, match="items.0.rank"):
            parse_payload(json.dumps(data), AS_OF)

    def test_string_confidence_rejected(self, llm_output):
        with pytest.raises(ContractViolation, match="confidence"):
            parse_payload(json.dumps(llm_output(confidence="0.5")), AS_OF)

    def test_integer_confidence_accepted(self, llm_output):
        payload = parse_payload(json.dumps(llm_output(confidence=1)), AS_OF)
        assert payload.items[0].confidence == 1.0

    def test_numeric_ticker_rejected(self, llm_output):
        data = llm_output()
        data["items"][0]["ticker"] = 5930
        with pytest.raises(ContractViolation, match="ticker"):
            parse_payload(json.dumps(data), AS_OF)
