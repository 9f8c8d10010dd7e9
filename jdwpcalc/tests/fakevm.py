"""In-process JDWP agent backed by Python integers.

Speaks the real wire protocol on a loopback socket so the client is
exercised end to end: handshake, framing, ID sizes, events and the
BigInteger/Class/Throwable methods the invoker needs.
"""

import fnmatch
import socket
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from jdwpcalc.proto.framing import HANDSHAKE, Framer, Packet, encode
from jdwpcalc.proto.serialization import PacketReader, PacketWriter
from jdwpcalc.proto.types import (
    COMMANDS,
    EVENT_COMPOSITE,
    EventKind,
    IDSizes,
    MethodID,
    ObjectID,
    ReferenceTypeID,
    SuspendPolicy,
    Tag,
    Value,
)

MAIN_THREAD = ObjectID(0x51)
NULL = ObjectID(0)

BIG_INTEGER = "Ljava/math/BigInteger;"
STRING = "Ljava/lang/String;"
CLASS = "Ljava/lang/Class;"
THROWABLE = "Ljava/lang/Throwable;"
OBJECT_ARRAY = "[Ljava/lang/Object;"
MAIN = "LMain;"
ARITHMETIC_EXCEPTION = "Ljava/lang/ArithmeticException;"
CLASS_NOT_FOUND = "Ljava/lang/ClassNotFoundException;"
NULL_POINTER = "Ljava/lang/NullPointerException;"

ALL_CLASSES = (
    BIG_INTEGER,
    STRING,
    CLASS,
    THROWABLE,
    OBJECT_ARRAY,
    MAIN,
    ARITHMETIC_EXCEPTION,
    CLASS_NOT_FOUND,
    NULL_POINTER,
)
PRELOADED = (STRING, CLASS, THROWABLE, OBJECT_ARRAY, BIG_INTEGER)

BINARY = "(Ljava/math/BigInteger;)Ljava/math/BigInteger;"


class VMError(Exception):
    """Answer the current command with a JDWP error code."""

    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = code


class Thrown(Exception):
    """A Java exception raised by a fake method."""

    def __init__(self, signature: str, message: str | None) -> None:
        super().__init__(message)
        self.signature = signature
        self.message = message


@dataclass
class FakeObject:
    signature: str
    value: Any = None


@dataclass
class FakeMethod:
    method_id: MethodID
    name: str
    signature: str
    impl: Callable[[ObjectID, list[Value]], Value]
    static: bool = False


def _divide(a: int, b: int) -> int:
    if b == 0:
        raise Thrown(ARITHMETIC_EXCEPTION, "BigInteger divide by zero")
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


class FakeVM:
    def __init__(
        self,
        id_sizes: IDSizes = IDSizes(8, 8, 8, 8, 8),
        *,
        echo_handshake: bool = True,
        send_vm_start: bool = True,
        preloaded: tuple[str, ...] = PRELOADED,
        silent: tuple[str, ...] = (),
        die_on: str | None = None,
        main_source: str = "Main.java",
    ) -> None:
        self.id_sizes = id_sizes
        self.echo_handshake = echo_handshake
        self.send_vm_start = send_vm_start
        self.silent = set(silent)
        self.die_on = die_on
        self.main_source = main_source

        self.requests: Counter[str] = Counter()
        self.packet_ids: list[int] = []
        self.handshake = b""
        self.after_handshake = b""
        self.suspended = True
        self.event_requests: dict[int, str] = {}

        self._loaded = set(preloaded)
        self._types = {sig: ReferenceTypeID(0x100 + i) for i, sig in enumerate(ALL_CLASSES)}
        self._signatures = {type_id.id: sig for sig, type_id in self._types.items()}
        self._methods: dict[str, list[FakeMethod]] = {}
        self._method_index: dict[int, FakeMethod] = {}
        self._objects: dict[int, FakeObject] = {}
        self._next_object = 0x1000
        self._next_request = 1
        self._next_event = 0x10000
        self._after: list[Packet] = []

        self._send_lock = threading.Lock()
        self._listener = socket.create_server(("127.0.0.1", 0))
        self.port = self._listener.getsockname()[1]
        self._conn: socket.socket | None = None
        self._thread = threading.Thread(target=self._serve, name="fake-vm", daemon=True)
        self._define_methods()

        self._handlers: dict[str, Callable[[PacketReader, PacketWriter], None]] = {
            "VirtualMachine.Version": self._version,
            "VirtualMachine.ClassesBySignature": self._classes_by_signature,
            "VirtualMachine.AllThreads": self._all_threads,
            "VirtualMachine.IDSizes": self._id_sizes,
            "VirtualMachine.Resume": self._resume,
            "VirtualMachine.CreateString": self._create_string,
            "ReferenceType.Signature": self._signature,
            "ReferenceType.Methods": self._methods_of,
            "ClassType.InvokeMethod": self._invoke_static,
            "ArrayType.NewInstance": self._new_array,
            "ObjectReference.ReferenceType": self._reference_type,
            "ObjectReference.InvokeMethod": self._invoke_instance,
            "StringReference.Value": self._string_value,
            "ArrayReference.SetValues": self._set_values,
            "EventRequest.Set": self._event_request,
            "ClassObjectReference.ReflectedType": self._reflected_type,
        }

    #
    # Lifecycle
    #
    def start(self) -> "FakeVM":
        self._thread.start()
        return self

    def stop(self) -> None:
        try:
            self._listener.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._listener.close()
        conn = self._conn
        if conn is not None:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        self._thread.join(timeout=2.0)

    @property
    def total_requests(self) -> int:
        return sum(self.requests.values())

    def send(self, data: bytes) -> None:
        assert self._conn is not None
        with self._send_lock:
            self._conn.sendall(data)

    def inject(self, data: bytes) -> None:
        """Push raw bytes to the client."""
        self.send(data)

    def object_value(self, obj: ObjectID) -> Any:
        return self._objects[obj.id].value

    def _serve(self) -> None:
        try:
            conn, _ = self._listener.accept()
        except OSError:
            return
        self._conn = conn
        with conn:
            self.handshake = self._recv_exact(conn, len(HANDSHAKE))
            if not self.echo_handshake:
                self.after_handshake = self._drain(conn)
                return
            self.send(HANDSHAKE)
            if self.send_vm_start:
                self.send(encode(self.event_packet(EventKind.VM_START, 0)))

            framer = Framer()
            while True:
                try:
                    chunk = conn.recv(4096)
                except OSError:
                    return
                if not chunk:
                    return
                framer.append_buffer(chunk)
                while (packet := framer.decode_frame()) is not None:
                    if not self._handle(conn, packet):
                        return

    @staticmethod
    def _recv_exact(conn: socket.socket, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = conn.recv(size - len(data))
            if not chunk:
                break
            data += chunk
        return data

    @staticmethod
    def _drain(conn: socket.socket) -> bytes:
        data = b""
        while True:
            try:
                chunk = conn.recv(4096)
            except OSError:
                return data
            if not chunk:
                return data
            data += chunk

    #
    # Dispatch
    #
    def _handle(self, conn: socket.socket, packet: Packet) -> bool:
        command = COMMANDS.get((packet.command_set, packet.command))
        name = command.name if command else f"{packet.command_set}.{packet.command}"
        self.requests[name] += 1
        self.packet_ids.append(packet.id)

        if name == self.die_on:
            self.send(encode(self.event_packet(EventKind.VM_DEATH, 0, policy=SuspendPolicy.NONE)))
            conn.shutdown(socket.SHUT_RDWR)
            return False
        if name in self.silent:
            return True

        handler = self._handlers.get(name)
        if handler is None:
            reply = Packet.reply(packet.id, error_code=99)
        else:
            reader = PacketReader(packet.payload, self.id_sizes)
            writer = PacketWriter(self.id_sizes)
            try:
                handler(reader, writer)
                reply = Packet.reply(packet.id, writer.getvalue())
            except VMError as exc:
                self._after.clear()
                reply = Packet.reply(packet.id, error_code=exc.code)

        self.send(encode(reply))
        for event in self._after:
            self.send(encode(event))
        self._after.clear()
        return True

    def event_packet(
        self,
        kind: int,
        request_id: int,
        *,
        signature: str | None = None,
        policy: int = SuspendPolicy.ALL,
    ) -> Packet:
        writer = PacketWriter(self.id_sizes).u8(policy).i32(1).u8(kind).i32(request_id)
        if kind in (EventKind.VM_START, EventKind.CLASS_PREPARE):
            writer.object_id(MAIN_THREAD)
        if kind == EventKind.CLASS_PREPARE:
            assert signature is not None
            writer.u8(1).reference_type_id(self._types[signature]).string(signature).i32(7)
        self._next_event += 1
        return Packet(
            id=self._next_event,
            command_set=EVENT_COMPOSITE.command_set,
            command=EVENT_COMPOSITE.command,
            payload=writer.getvalue(),
        )

    #
    # Heap
    #
    def _new(self, signature: str, value: Any = None) -> ObjectID:
        self._next_object += 1
        self._objects[self._next_object] = FakeObject(signature, value)
        return ObjectID(self._next_object)

    def _object(self, obj: ObjectID) -> FakeObject:
        found = self._objects.get(obj.id)
        if found is None:
            raise VMError(20)
        return found

    def _big_integer(self, value: Value) -> int:
        if value.value is None or value.value.is_null:
            raise Thrown(NULL_POINTER, None)
        found = self._object(value.value)
        if found.signature != BIG_INTEGER:
            raise VMError(34)
        return found.value

    def _type(self, type_id: ReferenceTypeID) -> str:
        signature = self._signatures.get(type_id.id)
        if signature is None:
            raise VMError(21)
        return signature

    #
    # Methods
    #
    def _define(self, clazz: str, name: str, signature: str, impl, static: bool = False) -> None:
        method = FakeMethod(MethodID(0x8000 + len(self._method_index)), name, signature, impl, static)
        self._methods.setdefault(clazz, []).append(method)
        self._method_index[method.method_id.id] = method

    def _define_methods(self) -> None:
        def number(n: int) -> Value:
            return Value.object(self._new(BIG_INTEGER, n))

        def text(s: str) -> Value:
            return Value.object(self._new(STRING, s), Tag.STRING)

        def binary(fn: Callable[[int, int], int]):
            def impl(this: ObjectID, args: list[Value]) -> Value:
                left = self._object(this).value
                return number(fn(left, self._big_integer(args[0])))

            return impl

        def for_name(this: ObjectID, args: list[Value]) -> Value:
            name = self._object(args[0].value).value
            signature = "L" + name.replace(".", "/") + ";"
            if signature not in self._types:
                raise Thrown(CLASS_NOT_FOUND, name)
            self._loaded.add(signature)
            return Value.object(self._new(CLASS, signature), Tag.CLASS_OBJECT)

        def get_message(this: ObjectID, args: list[Value]) -> Value:
            message = self._object(this).value
            if message is None:
                return Value.object(NULL)
            return text(message)

        self._define(BIG_INTEGER, "valueOf", "(J)Ljava/math/BigInteger;", lambda this, args: number(args[0].value), static=True)
        self._define(BIG_INTEGER, "add", BINARY, binary(lambda a, b: a + b))
        self._define(BIG_INTEGER, "add", "(J)Ljava/math/BigInteger;", lambda this, args: number(self._object(this).value + args[0].value))
        self._define(BIG_INTEGER, "subtract", BINARY, binary(lambda a, b: a - b))
        self._define(BIG_INTEGER, "multiply", BINARY, binary(lambda a, b: a * b))
        self._define(BIG_INTEGER, "divide", BINARY, binary(_divide))
        self._define(BIG_INTEGER, "toString", "()Ljava/lang/String;", lambda this, args: text(str(self._object(this).value)))
        self._define(BIG_INTEGER, "toString", "(I)Ljava/lang/String;", lambda this, args: text(format(self._object(this).value, "x")))
        self._define(CLASS, "forName", "(Ljava/lang/String;)Ljava/lang/Class;", for_name, static=True)
        self._define(THROWABLE, "getMessage", "()Ljava/lang/String;", get_message)

    def _invoke(self, thread: ObjectID, method_id: MethodID, this: ObjectID, args: list[Value]) -> tuple[Value, ObjectID]:
        if thread != MAIN_THREAD:
            raise VMError(10)
        if not self.suspended:
            raise VMError(13)
        method = self._method_index.get(method_id.id)
        if method is None:
            raise VMError(23)
        try:
            return method.impl(this, args), NULL
        except Thrown as exc:
            return Value.object(NULL), self._new(exc.signature, exc.message)

    #
    # Command handlers
    #
    def _version(self, reader: PacketReader, writer: PacketWriter) -> None:
        writer.string("Fake VM for tests").i32(17).i32(0).string("17.0.2").string("FakeVM")

    def _classes_by_signature(self, reader: PacketReader, writer: PacketWriter) -> None:
        signature = reader.string()
        if signature in self._loaded:
            writer.i32(1).u8(1).reference_type_id(self._types[signature]).i32(7)
        else:
            writer.i32(0)

    def _all_threads(self, reader: PacketReader, writer: PacketWriter) -> None:
        writer.i32(1).object_id(MAIN_THREAD)

    def _id_sizes(self, reader: PacketReader, writer: PacketWriter) -> None:
        sizes = self.id_sizes
        writer.i32(sizes.field_id_size).i32(sizes.method_id_size).i32(sizes.object_id_size)
        writer.i32(sizes.reference_type_id_size).i32(sizes.frame_id_size)

    def _resume(self, reader: PacketReader, writer: PacketWriter) -> None:
        self.suspended = False
        for request_id, pattern in self.event_requests.items():
            if fnmatch.fnmatchcase(self.main_source, pattern):
                self._loaded.add(MAIN)
                self._after.append(self.event_packet(EventKind.CLASS_PREPARE, request_id, signature=MAIN))
                self.suspended = True
                break

    def _create_string(self, reader: PacketReader, writer: PacketWriter) -> None:
        writer.object_id(self._new(STRING, reader.string()))

    def _signature(self, reader: PacketReader, writer: PacketWriter) -> None:
        writer.string(self._type(reader.reference_type_id()))

    def _methods_of(self, reader: PacketReader, writer: PacketWriter) -> None:
        methods = self._methods.get(self._type(reader.reference_type_id()), [])
        writer.i32(len(methods))
        for method in methods:
            writer.method_id(method.method_id).string(method.name).string(method.signature)
            writer.i32(0x9 if method.static else 0x1)

    def _read_arguments(self, reader: PacketReader) -> list[Value]:
        return [reader.value() for _ in range(reader.i32())]

    def _invoke_static(self, reader: PacketReader, writer: PacketWriter) -> None:
        self._type(reader.reference_type_id())
        thread = reader.object_id()
        method_id = reader.method_id()
        args = self._read_arguments(reader)
        reader.i32()
        result, exception = self._invoke(thread, method_id, NULL, args)
        writer.value(result).value(Value.object(exception))

    def _invoke_instance(self, reader: PacketReader, writer: PacketWriter) -> None:
        this = reader.object_id()
        self._object(this)
        thread = reader.object_id()
        self._type(reader.reference_type_id())
        method_id = reader.method_id()
        args = self._read_arguments(reader)
        reader.i32()
        result, exception = self._invoke(thread, method_id, this, args)
        writer.value(result).value(Value.object(exception))

    def _new_array(self, reader: PacketReader, writer: PacketWriter) -> None:
        signature = self._type(reader.reference_type_id())
        if not signature.startswith("["):
            raise VMError(21)
        length = reader.i32()
        writer.value(Value.object(self._new(signature, [NULL] * length), Tag.ARRAY))

    def _reference_type(self, reader: PacketReader, writer: PacketWriter) -> None:
        found = self._object(reader.object_id())
        writer.u8(1).reference_type_id(self._types[found.signature])

    def _string_value(self, reader: PacketReader, writer: PacketWriter) -> None:
        found = self._object(reader.object_id())
        if found.signature != STRING:
            raise VMError(506)
        writer.string(found.value)

    def _set_values(self, reader: PacketReader, writer: PacketWriter) -> None:
        array = self._object(reader.object_id())
        first = reader.i32()
        count = reader.i32()
        if first < 0 or first + count > len(array.value):
            raise VMError(504)
        for index in range(first, first + count):
            array.value[index] = reader.object_id()

    def _event_request(self, reader: PacketReader, writer: PacketWriter) -> None:
        kind = reader.u8()
        reader.u8()
        pattern = "*"
        for _ in range(reader.i32()):
            if reader.u8() == 12:
                pattern = reader.string()
        if kind != EventKind.CLASS_PREPARE:
            raise VMError(99)
        request_id = self._next_request
        self._next_request += 1
        self.event_requests[request_id] = pattern
        writer.i32(request_id)

    def _reflected_type(self, reader: PacketReader, writer: PacketWriter) -> None:
        found = self._object(reader.object_id())
        if found.signature != CLASS:
            raise VMError(20)
        writer.u8(1).reference_type_id(self._types[found.value])
