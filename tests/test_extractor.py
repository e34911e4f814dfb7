from __future__ import annotations

import pytest

from topicwave.echo.extractor import Sample, extract_sample, parse_scalar
from topicwave.echo.parser import Record


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("42", 42.0),
        ("  -0.5 ", -0.5),
        ("1e3,", 1000.0),
        ("'3.5'", 3.5),
        ('"7"', 7.0),
        ("true", 1.0),
        ("FALSE", 0.0),
        ("'True'", 1.0),
        ("abc", None),
        ("", None),
        ("[1, 2]", None),
        ("nan", None),
        ("inf", None),
        (None, None),
    ],
)
def test_parse_scalar(raw: str | None, expected: float | None) -> None:
    assert parse_scalar(raw) == expected


def test_explicit_field_path_is_used_verbatim() -> None:
    record = Record({"data": "1", "twist.linear.x": "2.5"})
    assert extract_sample(record, "twist.linear.x", 10.0) == Sample(t=10.0, v=2.5)


def test_explicit_field_path_absent_gives_no_sample() -> None:
    record = Record({"data": "1"})
    assert extract_sample(record, "twist.linear.x", 10.0) is None


def test_explicit_non_numeric_field_gives_no_sample() -> None:
    record = Record({"frame_id": "map"})
    assert extract_sample(record, "frame_id", 10.0) is None


def test_auto_prefers_data_field() -> None:
    record = Record({"a": "5", "data": "9"})
    assert extract_sample(record, "", 1.0).v == 9.0


def test_auto_takes_first_numeric_in_document_order() -> None:
    record = Record({"frame_id": "map", "range": "3.0", "min_range": "0.1"})
    assert extract_sample(record, "", 1.0).v == 3.0


def test_auto_falls_back_when_data_is_not_numeric() -> None:
    record = Record({"data": "hello", "count": "4"})
    assert extract_sample(record, "", 1.0).v == 4.0


def test_no_numeric_candidate_gives_no_sample() -> None:
    assert extract_sample(Record({"data": "hello"}), "", 1.0) is None
    assert extract_sample(Record(), "", 1.0) is None


def test_header_stamp_used_as_time() -> None:
    record = Record(
        {"header.stamp.sec": "12", "header.stamp.nanosec": "500000000", "data": "1"}
    )
    assert extract_sample(record, "", 99.0).t == pytest.approx(12.5)


def test_plain_stamp_used_when_no_header() -> None:
    record = Record({"stamp.sec": "3", "stamp.nanosec": "250000000", "data": "1"})
    assert extract_sample(record, "data", 99.0).t == pytest.approx(3.25)


def test_malformed_stamp_falls_back_to_received_time() -> None:
    record = Record({"header.stamp.sec": "x", "header.stamp.nanosec": "1", "data": "1"})
    assert extract_sample(record, "data", 99.0).t == 99.0


def test_quoted_value_under_explicit_path() -> None:
    sample = extract_sample(Record({"a.b": '"2"'}), "a.b", 5.0)
    assert sample == Sample(t=5.0, v=2.0)


def test_oversized_stamp_falls_back_to_received_time() -> None:
    record = Record({"stamp.sec": "9" * 400, "stamp.nanosec": "0", "data": "1"})
    assert extract_sample(record, "", 7.0) == Sample(t=7.0, v=1.0)
