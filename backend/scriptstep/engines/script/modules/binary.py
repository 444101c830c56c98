"""
Binary module for guest scripts: encode, decode, get_bytes, prepare.

Attachments reach the sandbox as metadata plus a handle; bytes are produced
only when guest code calls get_bytes().
"""

import base64
import binascii
from collections.abc import Mapping
from types import SimpleNamespace
from typing import Any, Callable

from scriptstep.models import BinaryAttachment, InputRecord

BinaryResolver = Callable[[str], bytes]

DEFAULT_MIME_TYPE = "application/octet-stream"


def encode(value: bytes | bytearray | str) -> str:
    raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    return base64.b64encode(raw).decode("ascii")


def decode(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


def attachment_view(att: BinaryAttachment) -> dict[str, Any]:
    """
    What guest code sees of an attachment. Handle-backed bytes stay on the
    host until get_bytes(); inline data is passed through as its base64 text.
    """
    return {
        "mime_type": att.mime_type,
        "file_name": att.file_name,
        "handle": att.handle,
        "size": att.size,
        "data": att.data,
    }


def make_binary_module(
    *,
    records: Mapping[int, InputRecord],
    default_index: int = 0,
    resolver: BinaryResolver | None = None,
    enabled: bool = True,
) -> Any:
    """Build the `binary` object. records maps input index -> InputRecord."""

    def _refuse(*args: Any, **kwargs: Any) -> Any:
        raise PermissionError("The binary helper is disabled for scripts on this host.")

    if not enabled:
        return SimpleNamespace(encode=_refuse, decode=_refuse, get_bytes=_refuse, prepare=_refuse)

    def get_bytes(name: str, index: int | None = None) -> bytes:
        i = default_index if index is None else int(index)
        record = records.get(i)
        if record is None:
            raise KeyError(f"No input record at index {i}")
        att = record.attachments.get(name)
        if att is None:
            raise KeyError(f"Record {i} has no attachment '{name}'")
        if att.data is not None:
            return decode(att.data)
        if att.handle is not None and resolver is not None:
            return resolver(att.handle)
        raise ValueError(f"Attachment '{name}' has no data that can be read here")

    def prepare(
        data: bytes | bytearray | str,
        file_name: str | None = None,
        mime_type: str = DEFAULT_MIME_TYPE,
    ) -> dict[str, Any]:
        encoded = encode(data)
        size = len(data.encode("utf-8")) if isinstance(data, str) else len(data)
        return {"mimeType": mime_type, "fileName": file_name, "data": encoded, "size": size}

    return SimpleNamespace(encode=encode, decode=decode, get_bytes=get_bytes, prepare=prepare)
