import base64
import json
from datetime import UTC, datetime

import pytest

from tqueue.core import codec
from tqueue.domain.errors import MessageDecodeError
from tqueue.domain.models import ClaimMessage, DeadlineMessage, PendingMessage


def test_encode_produces_ascii_text():
    text = codec.encode(PendingMessage(task_id="t", run_id=0, hint_id="h"))
    assert isinstance(text, str)
    assert text.isascii()


def test_encode_is_base64_of_camel_case_json():
    text = codec.encode(PendingMessage(task_id="abc", run_id=3, hint_id="h1"))
    data = json.loads(base64.b64decode(text))
    assert data == {"taskId": "abc", "runId": 3, "hintId": "h1"}


def test_encode_decode_roundtrip():
    msg = ClaimMessage(
        task_id="abc",
        run_id=1,
        taken_until=datetime(2024, 1, 1, 0, 20, tzinfo=UTC),
    )
    assert codec.decode(codec.encode(msg), ClaimMessage) == msg


def test_encode_datetime_in_iso8601():
    msg = DeadlineMessage(
        task_id="t",
        task_group_id="g",
        scheduler_id="s",
        deadline=datetime(2024, 1, 1, tzinfo=UTC),
    )
    data = json.loads(base64.b64decode(codec.encode(msg)))
    assert data["deadline"].startswith("2024-01-01T00:00:00")
    assert data["deadline"].endswith("Z") or "+00:00" in data["deadline"]


def test_decode_accepts_payload_written_by_other_producers():
    raw = json.dumps({"taskId": "t", "runId": 0, "hintId": "x"}).encode("utf-8")
    msg = codec.decode(base64.b64encode(raw).decode("ascii"), PendingMessage)
    assert msg.task_id == "t"
    assert msg.hint_id == "x"


def test_decode_non_base64_raises():
    with pytest.raises(MessageDecodeError):
        codec.decode("%%% not base64 %%%", PendingMessage)


def test_decode_wrong_shape_raises():
    text = base64.b64encode(b'{"something": "else"}').decode("ascii")
    with pytest.raises(MessageDecodeError):
        codec.decode(text, PendingMessage)


def test_decode_non_json_raises():
    text = base64.b64encode(b"plain text").decode("ascii")
    with pytest.raises(MessageDecodeError):
        codec.decode(text, PendingMessage)
