"""Tests for script parameter encoding."""

from __future__ import annotations

import pytest

from outlook_mcp.core.params import LIST_DELIMITER, encode_parameters, join_list

pytestmark = pytest.mark.unit


class TestEncodeParameters:
    def test_empty_mapping_yields_no_tokens(self):
        assert encode_parameters({}) == []
        assert encode_parameters(None) == []

    def test_each_present_value_yields_flag_and_value(self):
        tokens = encode_parameters({"Subject": "Team Sync", "EventId": "0000ABC"})
        assert tokens == ["-Subject", "Team Sync", "-EventId", "0000ABC"]

    def test_follows_mapping_order(self):
        tokens = encode_parameters({"EndDate": "b", "StartDate": "a"})
        assert tokens == ["-EndDate", "b", "-StartDate", "a"]

    @pytest.mark.parametrize("absent", [None, ""])
    def test_absent_values_are_omitted(self, absent):
        tokens = encode_parameters({"Body": absent, "Subject": "x", "Location": absent})
        assert tokens == ["-Subject", "x"]
        assert "-Body" not in tokens
        assert "-Location" not in tokens

    def test_whitespace_value_is_kept(self):
        assert encode_parameters({"Body": " "}) == ["-Body", " "]

    def test_booleans_render_lowercase(self):
        assert encode_parameters({"IsAllDay": True}) == ["-IsAllDay", "true"]
        assert encode_parameters({"IsAllDay": False}) == ["-IsAllDay", "false"]

    def test_zero_is_not_treated_as_absent(self):
        assert encode_parameters({"Count": 0}) == ["-Count", "0"]

    def test_values_with_spaces_stay_single_tokens(self):
        tokens = encode_parameters({"Query": "quarterly planning review"})
        assert len(tokens) == 2
        assert tokens[1] == "quarterly planning review"

    @pytest.mark.parametrize("value", [["a", "b"], ("a",), {"a"}, {"k": "v"}])
    def test_collections_are_rejected(self, value):
        with pytest.raises(TypeError, match="join list values"):
            encode_parameters({"Attendees": value})

    @pytest.mark.parametrize("name", ["", "-Subject", "Start Date", "1Bad", "a;b"])
    def test_malformed_names_are_rejected(self, name):
        with pytest.raises(ValueError, match="Invalid script parameter name"):
            encode_parameters({name: "x"})


class TestJoinList:
    def test_joins_with_semicolon(self):
        assert LIST_DELIMITER == ";"
        assert join_list(["a@example.com", "b@example.com"]) == "a@example.com;b@example.com"

    def test_strips_and_skips_blank_entries(self):
        assert join_list([" a@example.com ", "", "  ", "b@example.com"]) == (
            "a@example.com;b@example.com"
        )

    def test_empty_or_missing_returns_none(self):
        assert join_list(None) is None
        assert join_list([]) is None
        assert join_list(["", " "]) is None

    def test_joined_value_encodes_as_one_pair(self):
        tokens = encode_parameters({"Attendees": join_list(["a@x.com", "b@x.com"])})
        assert tokens == ["-Attendees", "a@x.com;b@x.com"]
