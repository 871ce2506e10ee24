"""
OpenTSDB sink tests without hitting the network: the requests session is a
Mock, and backoff sleeps are patched out.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from PDL.tsdb import DataPoint, OpenTSDBSink, SinkUnavailable

POINT = DataPoint(
    metric="vitals.perMin.HeartRate",
    timestamp=1451649600000,
    value=120,
    tags={"subjectId": "abc123"},
)


def test_url_is_joined_from_base_and_put_path():
    assert OpenTSDBSink("http://tsdb:4242/", "/api/put", session=Mock()).url == "http://tsdb:4242/api/put"
    assert OpenTSDBSink("http://tsdb:4242", "api/put", session=Mock()).url == "http://tsdb:4242/api/put"
    assert OpenTSDBSink("http://tsdb:4242", "", session=Mock()).url == "http://tsdb:4242/api/put"


def test_store_posts_opentsdb_json():
    session = Mock()
    session.post.return_value = Mock(status_code=204)
    sink = OpenTSDBSink("http://tsdb:4242", session=session)

    sink.store(POINT)

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args[0] == "http://tsdb:4242/api/put"
    assert kwargs["json"] == {
        "metric": "vitals.perMin.HeartRate",
        "timestamp": 1451649600000,
        "value": 120,
        "tags": {"subjectId": "abc123"},
    }
    assert sink.stored == 1


def test_store_retries_then_succeeds():
    session = Mock()
    ok = Mock()
    session.post.side_effect = [requests.ConnectionError("down"), ok]
    sink = OpenTSDBSink("http://tsdb:4242", session=session, attempts=3)

    with patch("PDL.tsdb.time.sleep") as sleep:
        sink.store(POINT)

    assert session.post.call_count == 2
    sleep.assert_called_once()
    assert sink.stored == 1


def _answer(status: int) -> Mock:
    resp = Mock(status_code=status)
    resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error", response=resp)
    return resp


def test_store_raises_sink_unavailable_after_all_attempts():
    session = Mock()
    session.post.return_value = _answer(503)
    sink = OpenTSDBSink("http://tsdb:4242", session=session, attempts=3)

    with patch("PDL.tsdb.time.sleep") as sleep:
        with pytest.raises(SinkUnavailable, match="tsdb:4242"):
            sink.store(POINT)

    assert session.post.call_count == 3
    assert sleep.call_count == 2
    assert sink.stored == 0


def test_timeouts_are_retried():
    session = Mock()
    session.post.side_effect = [requests.Timeout("slow"), requests.Timeout("slow"), Mock()]
    sink = OpenTSDBSink("http://tsdb:4242", session=session, attempts=3)

    with patch("PDL.tsdb.time.sleep"):
        sink.store(POINT)

    assert session.post.call_count == 3
    assert sink.stored == 1


@pytest.mark.parametrize("status", [400, 404, 413])
def test_rejected_point_is_not_retried(status):
    session = Mock()
    session.post.return_value = _answer(status)
    sink = OpenTSDBSink("http://tsdb:4242", session=session, attempts=3)

    with patch("PDL.tsdb.time.sleep") as sleep:
        with pytest.raises(SinkUnavailable, match=str(status)):
            sink.store(POINT)

    assert session.post.call_count == 1
    sleep.assert_not_called()
