"""
Codec — serialize message payloads to the queue primitive's text encoding.

Queue primitives restrict the characters allowed in raw message text, so
every payload is dumped to JSON (camelCase keys, ISO-8601 timestamps),
encoded as UTF-8 and then base64'd.

Wire format (before base64):
----------------------------
{"taskId": "fN1SbArXTPSVFNUvaOlinQ", "runId": 0, "hintId": "3b6c..."}
"""

from __future__ import annotations

import base64
import binascii
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from tqueue.domain.errors import MessageDecodeError

M = TypeVar("M", bound=BaseModel)


def encode(payload: BaseModel) -> str:
    """Serialize a payload model to base64 text."""
    data = payload.model_dump_json(by_alias=True).encode("utf-8")
    return base64.b64encode(data).decode("ascii")


def decode(text: str, model: type[M]) -> M:
    """Deserialize base64 text into ``model``. Raises MessageDecodeError."""
    try:
        data = base64.b64decode(text, validate=True)
        return model.model_validate_json(data)
    except (binascii.Error, ValidationError) as exc:
        raise MessageDecodeError(
            f"Cannot decode {model.__name__} from message text: {exc}"
        ) from exc
