"""
Message shapes exchanged between a controller and a worker thread.

Field names and `type` values follow the wire format used by existing
controllers (`fileData`, `chunkSize`, `progress`, `error`, ...). The models
accept either the wire name or the Python attribute name.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..config import DEFAULT_CHUNK_SIZE

OPERATION_TYPES = ("parseText", "parsePdf", "parseDocx", "processText", "enhanceText")
TERMINAL_TYPES = ("complete", "error", "cancelled")


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Optional correlation id, echoed back on every response to the operation
    id: Optional[str] = None

    def to_wire(self):
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Controller -> worker ---
class ParseTextMessage(WireModel):
    type: Literal["parseText"] = "parseText"
    file_data: bytes = Field(alias="fileData")
    file_name: str = Field("", alias="fileName")
    file_type: str = Field("", alias="fileType")
    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, alias="chunkSize", gt=0)


class ParsePdfMessage(WireModel):
    type: Literal["parsePdf"] = "parsePdf"
    file_data: bytes = Field(alias="fileData")


class ParseDocxMessage(WireModel):
    type: Literal["parseDocx"] = "parseDocx"
    file_data: bytes = Field(alias="fileData")
    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, alias="chunkSize", gt=0)


class ProcessTextMessage(WireModel):
    type: Literal["processText"] = "processText"
    text: str
    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, alias="chunkSize", gt=0)


class EnhanceTextMessage(WireModel):
    type: Literal["enhanceText"] = "enhanceText"
    text: str
    options: Dict[str, Any] = Field(default_factory=dict)


class CancelMessage(WireModel):
    type: Literal["cancel"] = "cancel"


WorkerMessage = Annotated[
    Union[ParseTextMessage, ParsePdfMessage, ParseDocxMessage,
          ProcessTextMessage, EnhanceTextMessage, CancelMessage],
    Field(discriminator="type"),
]
_message_adapter = TypeAdapter(WorkerMessage)


# --- Worker -> controller ---
class ProgressMessage(WireModel):
    type: Literal["progress"] = "progress"
    percent: int = Field(alias="progress", ge=0, le=100)
    stage: Optional[str] = None


class CompleteMessage(WireModel):
    type: Literal["complete"] = "complete"
    result: Any = None


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    message: str = Field(alias="error")


class CancelledMessage(WireModel):
    type: Literal["cancelled"] = "cancelled"


class UnknownMessageType(ValueError):
    pass


def parse_message(raw):
    """
    Validates an incoming controller message.

    Args:
        raw (dict or WireModel): The message as received.

    Returns:
        One of the controller -> worker models.

    Raises:
        UnknownMessageType: If `type` is missing or not part of the protocol.
        pydantic.ValidationError: If a known message is missing fields.
    """
    if isinstance(raw, WireModel):
        raw = raw.to_wire()
    if not isinstance(raw, dict) or raw.get("type") not in OPERATION_TYPES + ("cancel",):
        raise UnknownMessageType("Unknown message type")
    return _message_adapter.validate_python(raw)


def progress(percent, stage=None, message_id=None):
    return ProgressMessage(id=message_id, percent=percent, stage=stage).to_wire()


def complete(result, message_id=None):
    message = CompleteMessage(id=message_id, result=result).to_wire()
    message.setdefault("result", result)
    return message


def error(message, message_id=None):
    return ErrorMessage(id=message_id, message=message).to_wire()


def cancelled(message_id=None):
    return CancelledMessage(id=message_id).to_wire()


def is_terminal(message):
    return message.get("type") in TERMINAL_TYPES

