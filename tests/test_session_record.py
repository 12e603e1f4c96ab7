"""
SessionRecord数据模型单元测试
"""

from datetime import datetime, timezone

import pytest

from session_store.storage import SessionRecord


def test_is_expired_boundary():
    record = SessionRecord(sid="s1", payload={}, expires_at=100.0)

    assert not record.is_expired(99.5)
    assert record.is_expired(100.0)
    assert record.is_expired(100.5)


def test_to_dict():
    record = SessionRecord(sid="s1", payload={"a": 1}, expires_at=0.0)

    assert record.to_dict() == {
        "sid": "s1",
        "session": {"a": 1},
        "expires": "1970-01-01T00:00:00+00:00",
    }


def test_from_dict_accepts_naive_timestamp_as_utc():
    record = SessionRecord.from_dict({
        "sid": "s1",
        "session": {},
        "expires": "2030-01-01T00:00:00",
    })

    assert record.expires == datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("document", [
    {"sid": "s1", "session": {}},
    {"sid": "s1", "session": [], "expires": "2030-01-01T00:00:00"},
    {"sid": "s1", "session": {}, "expires": "tomorrow"},
])
def test_from_dict_rejects_malformed(document):
    with pytest.raises((KeyError, TypeError, ValueError)):
        SessionRecord.from_dict(document)
