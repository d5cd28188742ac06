"""Tests for occurrence key encoding and decoding."""

from datetime import date

import pytest

from pointwise_scheduler.exceptions import MalformedKey
from pointwise_scheduler.models import OccurrenceKey
from pointwise_scheduler.recurrence.instance_keys import (
    decode,
    encode,
    instance_id_for,
    is_valid_key,
)

pytestmark = pytest.mark.unit


class TestEncode:
    """Key construction."""

    def test_encode_when_simple_id_then_readable_key(self):
        assert encode("tmpl-1", date(2024, 1, 5), 0) == "occ1:tmpl-1:20240105:0"

    def test_encode_when_id_contains_separator_then_percent_encoded(self):
        key = encode("team:standup", date(2024, 1, 5), 2)
        assert key == "occ1:team%3Astandup:20240105:2"

    def test_encode_when_called_twice_then_identical(self):
        assert encode("a", date(2024, 2, 29), 1) == encode("a", date(2024, 2, 29), 1)

    def test_encode_when_different_slots_then_distinct(self):
        keys = {encode("a", date(2024, 1, 1), slot) for slot in range(5)}
        assert len(keys) == 5

    def test_encode_when_ids_collide_after_naive_join_then_still_distinct(self):
        # "a:20240101" + date vs "a" + date must never produce the same key
        left = encode("a:20240101", date(2024, 1, 1), 0)
        right = encode("a", date(2024, 1, 1), 0)
        assert left != right

    def test_encode_when_early_year_then_zero_padded(self):
        assert encode("x", date(33, 4, 5), 0) == "occ1:x:00330405:0"

    @pytest.mark.parametrize(
        ("template_id", "slot"),
        [("", 0), (None, 0), ("x", -1), ("x", True), ("x", 1.5)],
    )
    def test_encode_when_argument_invalid_then_raises_value_error(self, template_id, slot):
        with pytest.raises(ValueError):
            encode(template_id, date(2024, 1, 1), slot)


class TestDecode:
    """Key parsing."""

    @pytest.mark.parametrize(
        ("template_id", "occurrence_date", "slot"),
        [
            ("standup", date(2024, 1, 1), 0),
            ("team:standup/daily", date(2024, 12, 31), 3),
            ("ünïcødé 任务", date(2000, 2, 29), 11),
            ("%41", date(1999, 7, 4), 0),
        ],
    )
    def test_decode_when_key_from_encode_then_round_trips(self, template_id, occurrence_date, slot):
        decoded = decode(encode(template_id, occurrence_date, slot))
        assert decoded == OccurrenceKey(template_id, occurrence_date, slot)

    @pytest.mark.parametrize(
        "key",
        [
            "",
            "garbage",
            "occ2:x:20240101:0",
            "occ1::20240101:0",
            "occ1:x:2024011:0",
            "occ1:x:20240230:0",
            "occ1:x:20240101:01",
            "occ1:x:20240101:-1",
            "occ1:x:20240101:0:extra",
            "occ1:%7e:20240101:0",
            "occ1:%ZZ:20240101:0",
            "occ1:%FF:20240101:0",
            " occ1:x:20240101:0",
        ],
    )
    def test_decode_when_not_produced_by_encode_then_raises(self, key):
        with pytest.raises(MalformedKey):
            decode(key)

    def test_decode_when_not_a_string_then_raises(self):
        with pytest.raises(MalformedKey):
            decode(12345)  # type: ignore[arg-type]

    def test_is_valid_key_when_checked_then_matches_decode(self):
        assert is_valid_key(encode("x", date(2024, 1, 1), 0))
        assert not is_valid_key("occ1:x:20241301:0")


class TestInstanceIds:
    """Generated instance IDs."""

    def test_instance_id_for_when_built_then_template_and_key_joined(self):
        key = encode("standup", date(2024, 1, 3), 0)
        assert instance_id_for("standup", key) == f"standup::{key}"
