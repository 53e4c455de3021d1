"""Tests for the shared JSON serializer."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from core.utils import json_serializer


class Color(Enum):
    RED = "red"


class Sample(BaseModel):
    name: str


class TestJsonSerializer:

    def test_datetime(self):
        value = datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc)
        assert json_serializer(value) == "2026-01-05T14:30:00+00:00"

    def test_date(self):
        assert json_serializer(date(2026, 1, 5)) == "2026-01-05"

    def test_decimal(self):
        assert json_serializer(Decimal("1.5")) == 1.5

    def test_path(self):
        assert json_serializer(Path("/tmp/events.jsonl")) == "/tmp/events.jsonl"

    def test_set_sorted(self):
        assert json_serializer({"b", "a"}) == ["a", "b"]

    def test_pydantic_model(self):
        assert json_serializer(Sample(name="x")) == {"name": "x"}

    def test_enum_value(self):
        assert json_serializer(Color.RED) == "red"

    def test_fallback_to_str(self):
        assert json_serializer(object()).startswith("<object object")

    def test_used_as_json_default(self):
        payload = {"at": datetime(2026, 1, 5, tzinfo=timezone.utc), "n": Decimal("2")}
        assert json.loads(json.dumps(payload, default=json_serializer)) == {
            "at": "2026-01-05T00:00:00+00:00",
            "n": 2.0,
        }
