"""Typed wrappers around the JDWP commands this package uses."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from .errors import ProtocolError
from .serialization import PacketReader, SerializationError
from .types import (
    ARRAY_REFERENCE_SET_VALUES,
    ARRAY_TYPE_NEW_INSTANCE,
    CLASS_OBJECT_REFLECTED_TYPE,
    CLASS_TYPE_INVOKE_METHOD,
    EVENT_REQUEST_SET,
    OBJECT_REFERENCE_INVOKE_METHOD,
    OBJECT_REFERENCE_REFERENCE_TYPE,
    REFERENCE_TYPE_METHODS,
    REFERENCE_TYPE_SIGNATURE,
    STRING_REFERENCE_VALUE,
    VM_ALL_THREADS,
    VM_CLASSES_BY_SIGNATURE,
    VM_CREATE_STRING,
    VM_RESUME,
    VM_VERSION,
    ClassInfo,
    Command,
    Event,
    EventKind,
    EventSet,
    IDSizes,
    InvokeResult,
    MethodID,
    MethodInfo,
    ModKind,
    ObjectID,
    ReferenceTypeID,
    SuspendPolicy,
    Value,
    VersionInfo,
)

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)


@contextmanager
def _decoding(command: Command) -> Iterator[None]:
    try:
        yield
    except SerializationError as exc:
        raise ProtocolError(f"malformed {command.name} reply: {exc}") from exc


def decode_event_set(payload: bytes, id_sizes: IDSizes | None) -> EventSet:
    """Decode an Event.Composite payload.

    Only VMStart, ClassPrepare and VMDeath are understood; decoding stops at
    the first other kind since its length is unknown.
    """
    reader = PacketReader(payload, id_sizes)
    suspend_policy = reader.u8()
    events: list[Event] = []
    for _ in range(reader.i32()):
        kind = reader.u8()
        request_id = reader.i32()
        if kind == EventKind.VM_START:
            events.append(Event(kind, request_id, thread=reader.object_id()))
        elif kind == EventKind.CLASS_PREPARE:
            thread = reader.object_id()
            reader.u8()
            reader.reference_type_id()
            signature = reader.string()
            reader.i32()
            events.append(Event(kind, request_id, thread=thread, signature=signature))
        elif kind == EventKind.VM_DEATH:
            events.append(Event(kind, request_id))
        else:
            logger.debug("skipping rest of event set at unsupported kind %d", kind)
            break
    return EventSet(suspend_policy, tuple(events))


class CommandClient:
    """One method per remote command; payload layout lives here and nowhere else."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    def _request(self, command: Command, payload: bytes = b"") -> PacketReader:
        reply = self.connection.send_request(command, payload)
        return self.connection.reader(reply.payload)

    def version(self) -> VersionInfo:
        reader = self._request(VM_VERSION)
        with _decoding(VM_VERSION):
            return VersionInfo(
                description=reader.string(),
                jdwp_major=reader.i32(),
                jdwp_minor=reader.i32(),
                vm_version=reader.string(),
                vm_name=reader.string(),
            )

    def classes_by_signature(self, signature: str) -> list[ClassInfo]:
        payload = self.connection.writer().string(signature).getvalue()
        reader = self._request(VM_CLASSES_BY_SIGNATURE, payload)
        with _decoding(VM_CLASSES_BY_SIGNATURE):
            return [
                ClassInfo(
                    ref_type_tag=reader.u8(),
                    type_id=reader.reference_type_id(),
                    status=reader.i32(),
                )
                for _ in range(reader.i32())
            ]

    def all_threads(self) -> list[ObjectID]:
        reader = self._request(VM_ALL_THREADS)
        with _decoding(VM_ALL_THREADS):
            return [reader.object_id() for _ in range(reader.i32())]

    def resume(self) -> None:
        self._request(VM_RESUME)

    def create_string(self, text: str) -> ObjectID:
        payload = self.connection.writer().string(text).getvalue()
        reader = self._request(VM_CREATE_STRING, payload)
        with _decoding(VM_CREATE_STRING):
            return reader.object_id()

    def signature(self, type_id: ReferenceTypeID) -> str:
        payload = self.connection.writer().reference_type_id(type_id).getvalue()
        reader = self._request(REFERENCE_TYPE_SIGNATURE, payload)
        with _decoding(REFERENCE_TYPE_SIGNATURE):
            return reader.string()

    def methods(self, type_id: ReferenceTypeID) -> list[MethodInfo]:
        payload = self.connection.writer().reference_type_id(type_id).getvalue()
        reader = self._request(REFERENCE_TYPE_METHODS, payload)
        with _decoding(REFERENCE_TYPE_METHODS):
            return [
                MethodInfo(
                    method_id=reader.method_id(),
                    name=reader.string(),
                    signature=reader.string(),
                    mod_bits=reader.i32(),
                )
                for _ in range(reader.i32())
            ]

    def invoke_static(
        self,
        clazz: ReferenceTypeID,
        thread: ObjectID,
        method: MethodID,
        arguments: list[Value],
        options: int,
    ) -> InvokeResult:
        payload = (
            self.connection.writer()
            .reference_type_id(clazz)
            .object_id(thread)
            .method_id(method)
            .values(arguments)
            .i32(options)
            .getvalue()
        )
        return self._invoke_result(CLASS_TYPE_INVOKE_METHOD, payload)

    def invoke_instance(
        self,
        obj: ObjectID,
        thread: ObjectID,
        clazz: ReferenceTypeID,
        method: MethodID,
        arguments: list[Value],
        options: int,
    ) -> InvokeResult:
        payload = (
            self.connection.writer()
            .object_id(obj)
            .object_id(thread)
            .reference_type_id(clazz)
            .method_id(method)
            .values(arguments)
            .i32(options)
            .getvalue()
        )
        return self._invoke_result(OBJECT_REFERENCE_INVOKE_METHOD, payload)

    def _invoke_result(self, command: Command, payload: bytes) -> InvokeResult:
        reader = self._request(command, payload)
        with _decoding(command):
            return_value = reader.value()
            _, exception = reader.tagged_object_id()
            return InvokeResult(return_value, exception)

    def new_array(self, array_type: ReferenceTypeID, length: int) -> ObjectID:
        payload = self.connection.writer().reference_type_id(array_type).i32(length).getvalue()
        reader = self._request(ARRAY_TYPE_NEW_INSTANCE, payload)
        with _decoding(ARRAY_TYPE_NEW_INSTANCE):
            _, array = reader.tagged_object_id()
            return array

    def set_array_values(self, array: ObjectID, first_index: int, values: list[Value]) -> None:
        writer = self.connection.writer().object_id(array).i32(first_index).i32(len(values))
        for value in values:
            writer.untagged_value(value)
        self._request(ARRAY_REFERENCE_SET_VALUES, writer.getvalue())

    def string_value(self, string: ObjectID) -> str:
        payload = self.connection.writer().object_id(string).getvalue()
        reader = self._request(STRING_REFERENCE_VALUE, payload)
        with _decoding(STRING_REFERENCE_VALUE):
            return reader.string()

    def reference_type(self, obj: ObjectID) -> ReferenceTypeID:
        payload = self.connection.writer().object_id(obj).getvalue()
        reader = self._request(OBJECT_REFERENCE_REFERENCE_TYPE, payload)
        with _decoding(OBJECT_REFERENCE_REFERENCE_TYPE):
            reader.u8()
            return reader.reference_type_id()

    def reflected_type(self, class_object: ObjectID) -> ReferenceTypeID:
        payload = self.connection.writer().object_id(class_object).getvalue()
        reader = self._request(CLASS_OBJECT_REFLECTED_TYPE, payload)
        with _decoding(CLASS_OBJECT_REFLECTED_TYPE):
            reader.u8()
            return reader.reference_type_id()

    def request_class_prepare(self, source_name: str) -> int:
        """Ask for a suspend-all ClassPrepare event for classes from source_name."""
        payload = (
            self.connection.writer()
            .u8(EventKind.CLASS_PREPARE)
            .u8(SuspendPolicy.ALL)
            .i32(1)
            .u8(ModKind.SOURCE_NAME_MATCH)
            .string(source_name)
            .getvalue()
        )
        reader = self._request(EVENT_REQUEST_SET, payload)
        with _decoding(EVENT_REQUEST_SET):
            return reader.i32()
