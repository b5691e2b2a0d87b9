"""Line-delimited JSON messages exchanged between the CLI and the daemon.

Every message is one JSON object tagged by ``"type"``::

    {"type": "start_recording", "max_duration": 300, "mode": "type"}
    {"type": "error", "code": "SESSION_BUSY", "message": "..."}
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from typing import Any, Optional, Union

from errors import ProtocolError


@dataclass
class Ping:
    type = "ping"


@dataclass
class StartRecording:
    max_duration: float = 0.0
    mode: Optional[str] = None
    type = "start_recording"


@dataclass
class StopRecording:
    type = "stop_recording"


@dataclass
class StatusRequest:
    type = "status"


@dataclass
class Shutdown:
    type = "shutdown"


@dataclass
class Ok:
    message: str
    type = "ok"


@dataclass
class Recording:
    session_id: str
    type = "recording"


@dataclass
class Error:
    code: str
    message: str
    type = "error"


@dataclass
class Status:
    state: str
    session_id: Optional[str] = None
    type = "status"


Request = Union[Ping, StartRecording, StopRecording, StatusRequest, Shutdown]
Response = Union[Ok, Recording, Error, Status]

REQUEST_TYPES = {cls.type: cls for cls in (Ping, StartRecording, StopRecording, StatusRequest, Shutdown)}
RESPONSE_TYPES = {cls.type: cls for cls in (Ok, Recording, Error, Status)}


def encode(message: Union[Request, Response]) -> bytes:
    payload = {"type": message.type, **asdict(message)}
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


def _decode(raw: Union[bytes, str], registry: dict[str, Any]) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        raise ProtocolError("empty message")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"malformed message: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")
    cls = registry.get(data.get("type"))
    if cls is None:
        raise ProtocolError(f"unknown message type: {data.get('type')!r}")
    kwargs = {f.name: data[f.name] for f in fields(cls) if f.name in data}
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ProtocolError(f"invalid {cls.type} message: {exc}") from exc


def decode_request(raw: Union[bytes, str]) -> Request:
    return _decode(raw, REQUEST_TYPES)


def decode_response(raw: Union[bytes, str]) -> Response:
    return _decode(raw, RESPONSE_TYPES)
