"""Serialization and deserialization of JDWP command payloads.

All multi-byte quantities are big-endian. Identifiers are written at the
widths negotiated through VirtualMachine.IDSizes, so both the writer and
the reader need the connection's IDSizes before touching any identifier.
"""

import struct
from typing import Self

from .types import (
    OBJECT_TAGS,
    PRIMITIVE_FORMATS,
    IDSizes,
    MethodID,
    ObjectID,
    ReferenceTypeID,
    Tag,
    Value,
)


class SerializationError(RuntimeError):
    """Raised when serialization or deserialization fails."""


def _int_to_bytes(value: int, size: int) -> bytes:
    try:
        return value.to_bytes(size, byteorder="big", signed=False)
    except OverflowError as exc:
        raise SerializationError(f"id {value:#x} does not fit in {size} bytes") from exc


class PacketWriter:
    """Builds a command payload.

    Example:
        payload = (
            PacketWriter(id_sizes)
            .reference_type_id(clazz)
            .object_id(thread)
            .method_id(method)
            .values([Value.long(42)])
            .i32(INVOKE_SINGLE_THREADED)
            .getvalue()
        )
    """

    def __init__(self, id_sizes: IDSizes | None = None) -> None:
        self._id_sizes = id_sizes
        self._buf = bytearray()

    def _sizes(self) -> IDSizes:
        if self._id_sizes is None:
            raise SerializationError("identifier sizes have not been negotiated")
        return self._id_sizes

    def u8(self, value: int) -> Self:
        self._buf.extend(struct.pack(">B", value))
        return self

    def i32(self, value: int) -> Self:
        self._buf.extend(struct.pack(">i", value))
        return self

    def string(self, value: str) -> Self:
        data = value.encode("utf-8")
        self.i32(len(data))
        self._buf.extend(data)
        return self

    def object_id(self, value: ObjectID) -> Self:
        self._buf.extend(_int_to_bytes(value.id, self._sizes().object_id_size))
        return self

    def reference_type_id(self, value: ReferenceTypeID) -> Self:
        self._buf.extend(_int_to_bytes(value.id, self._sizes().reference_type_id_size))
        return self

    def method_id(self, value: MethodID) -> Self:
        self._buf.extend(_int_to_bytes(value.id, self._sizes().method_id_size))
        return self

    def untagged_value(self, value: Value) -> Self:
        if value.tag in OBJECT_TAGS:
            return self.object_id(value.value)
        if value.tag == Tag.VOID:
            return self
        fmt = PRIMITIVE_FORMATS.get(value.tag)
        if fmt is None:
            raise SerializationError(f"unknown value tag {value.tag!r}")
        try:
            self._buf.extend(struct.pack(">" + fmt, value.value))
        except struct.error as exc:
            raise SerializationError(f"cannot pack {value.value!r} as {value.tag!r}: {exc}") from exc
        return self

    def value(self, value: Value) -> Self:
        self._buf.extend(value.tag)
        return self.untagged_value(value)

    def values(self, values: list[Value]) -> Self:
        """Write an argument array: 4-byte count then tagged elements."""
        self.i32(len(values))
        for value in values:
            self.value(value)
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class PacketReader:
    """Reads a reply or event payload front to back."""

    def __init__(self, data: bytes | memoryview, id_sizes: IDSizes | None = None) -> None:
        self._data = memoryview(data)
        self._offset = 0
        self._id_sizes = id_sizes

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, size: int) -> memoryview:
        if size > self.remaining:
            raise SerializationError(
                f"payload truncated: wanted {size} bytes at offset {self._offset}, "
                f"{self.remaining} left"
            )
        chunk = self._data[self._offset : self._offset + size]
        self._offset += size
        return chunk

    def _unpack(self, fmt: str) -> object:
        (value,) = struct.unpack(">" + fmt, self._take(struct.calcsize(">" + fmt)))
        return value

    def _id(self, size: int) -> int:
        return int.from_bytes(self._take(size), byteorder="big", signed=False)

    def _sizes(self) -> IDSizes:
        if self._id_sizes is None:
            raise SerializationError("identifier sizes have not been negotiated")
        return self._id_sizes

    def u8(self) -> int:
        return self._unpack("B")  # type: ignore[return-value]

    def i32(self) -> int:
        return self._unpack("i")  # type: ignore[return-value]

    def string(self) -> str:
        length = self.i32()
        if length < 0:
            raise SerializationError(f"negative string length {length}")
        data = self._take(length)
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SerializationError(f"invalid string data: {exc}") from exc

    def object_id(self) -> ObjectID:
        return ObjectID(self._id(self._sizes().object_id_size))

    def reference_type_id(self) -> ReferenceTypeID:
        return ReferenceTypeID(self._id(self._sizes().reference_type_id_size))

    def method_id(self) -> MethodID:
        return MethodID(self._id(self._sizes().method_id_size))

    def tagged_object_id(self) -> tuple[bytes, ObjectID]:
        tag = bytes(self._take(1))
        return tag, self.object_id()

    def untagged_value(self, tag: bytes) -> Value:
        if tag in OBJECT_TAGS:
            return Value(tag, self.object_id())
        if tag == Tag.VOID:
            return Value(tag)
        fmt = PRIMITIVE_FORMATS.get(tag)
        if fmt is None:
            raise SerializationError(f"unknown value tag {tag!r}")
        return Value(tag, self._unpack(fmt))

    def value(self) -> Value:
        return self.untagged_value(bytes(self._take(1)))

    def expect_end(self) -> None:
        if self.remaining:
            raise SerializationError(f"{self.remaining} unexpected trailing bytes")

    @classmethod
    def id_sizes(cls, data: bytes) -> IDSizes:
        """Decode a VirtualMachine.IDSizes reply (needs no identifier widths)."""
        reader = cls(data)
        sizes = IDSizes(*(reader.i32() for _ in range(5)))
        reader.expect_end()
        if any(size not in (1, 2, 4, 8) for size in _fields(sizes)):
            raise SerializationError(f"unsupported identifier sizes {sizes}")
        return sizes


def _fields(sizes: IDSizes) -> tuple[int, ...]:
    return (
        sizes.field_id_size,
        sizes.method_id_size,
        sizes.object_id_size,
        sizes.reference_type_id_size,
        sizes.frame_id_size,
    )
