from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chat_client.application.exceptions import FrameDecodeError
from chat_client.infrastructure.ws.protocol import Frame

M = TypeVar("M", bound=BaseModel)


def encode_frame(event: str, payload: BaseModel | Mapping[str, Any] | None = None) -> str:
    if payload is None:
        data: dict[str, Any] = {}
    elif isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json", by_alias=True)
    else:
        data = dict(payload)
    return Frame(event=str(event), data=data).model_dump_json()


def decode_frame(raw: str | bytes) -> Frame:
    try:
        frame = Frame.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise FrameDecodeError(f"Malformed frame: {exc.error_count()} error(s)") from exc
    if not frame.event:
        raise FrameDecodeError("Frame has no event name")
    return frame


def parse_payload(model: type[M], data: Mapping[str, Any]) -> M:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise FrameDecodeError(f"Invalid {model.__name__} payload") from exc
