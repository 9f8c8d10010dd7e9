"""Reflective operations on java.math.BigInteger, composed from JDWP commands.

Every operation is a strict sequence of requests on one connection. Any
failure aborts the whole operation and propagates a classified error.
"""

import logging
from dataclasses import dataclass

from .cache import ResolutionError, type_signature
from .connection import Connection
from .errors import ProtocolError
from .types import (
    INVOKE_SINGLE_THREADED,
    EventKind,
    InvokeResult,
    MethodID,
    ObjectID,
    ReferenceTypeID,
    Tag,
    Value,
)

logger = logging.getLogger(__name__)

BIG_INTEGER = "java.math.BigInteger"
BIG_INTEGER_SIGNATURE = type_signature(BIG_INTEGER)
CLASS_SIGNATURE = "Ljava/lang/Class;"
THROWABLE_SIGNATURE = "Ljava/lang/Throwable;"
CLASS_NOT_FOUND = "java.lang.ClassNotFoundException"

VALUE_OF = ("valueOf", "(J)Ljava/math/BigInteger;")
TO_STRING = ("toString", "()Ljava/lang/String;")
FOR_NAME = ("forName", "(Ljava/lang/String;)Ljava/lang/Class;")
GET_MESSAGE = ("getMessage", "()Ljava/lang/String;")
BINARY_DESCRIPTOR = "(Ljava/math/BigInteger;)Ljava/math/BigInteger;"
BINARY_OPERATIONS = frozenset(["add", "subtract", "multiply", "divide"])


class RemoteInvocationError(RuntimeError):
    """Raised when a reflectively invoked method throws inside the remote VM."""

    def __init__(self, method: str, exception_class: str | None, message: str | None) -> None:
        self.method = method
        self.exception_class = exception_class
        self.message = message
        detail = exception_class or "exception"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(f"{method} threw {detail}")


@dataclass
class SessionConfig:
    source_file: str | None = "Main.java"
    event_timeout: float = 10.0
    load_classes: bool = True


def _class_name(signature: str) -> str:
    if signature.startswith("L") and signature.endswith(";"):
        return signature[1:-1].replace("/", ".")
    return signature


class ReflectiveInvoker:
    """BigInteger arithmetic driven through reflective invocation.

    Example:
        with connect(ConnectionConfig(port=5005)) as connection:
            invoker = ReflectiveInvoker(connection)
            invoker.attach()
            total = invoker.invoke_binary_op("add", invoker.box_integer(1), invoker.box_integer(2))
            print(invoker.stringify(total))
    """

    def __init__(
        self,
        connection: Connection,
        config: SessionConfig | None = None,
        thread: ObjectID | None = None,
    ) -> None:
        self.connection = connection
        self.config = config or SessionConfig()
        self.commands = connection.commands
        self.cache = connection.cache
        self.thread = thread

    def attach(self) -> ObjectID:
        """Choose the thread that will run invoked methods.

        With a source file configured, the VM is resumed once and the thread
        reported by the class-prepare event for that file is used. Otherwise
        the thread of an already received VMStart event is used, falling back
        to the first thread the VM reports.
        """
        if self.config.source_file:
            self.thread = self._wait_for_class_prepare(self.config.source_file)
        else:
            self.thread = self._started_thread() or self._first_thread()
        logger.info("Invoking on thread %#x", self.thread.id)
        return self.thread

    def _wait_for_class_prepare(self, source_file: str) -> ObjectID:
        logger.info("Waiting for a class from %s to be prepared", source_file)
        request_id = self.commands.request_class_prepare(source_file)
        self.commands.resume()
        while True:
            event_set = self.connection.next_event(self.config.event_timeout)
            for event in event_set.events:
                if event.kind == EventKind.VM_DEATH:
                    raise ProtocolError("the remote VM died before the entry class was prepared")
                if event.kind == EventKind.CLASS_PREPARE and event.request_id == request_id:
                    if event.thread is None:
                        raise ProtocolError("class-prepare event carries no thread")
                    logger.info("Class %s prepared", event.signature)
                    return event.thread

    def _started_thread(self) -> ObjectID | None:
        while (event_set := self.connection.poll_event()) is not None:
            for event in event_set.events:
                if event.kind == EventKind.VM_START and event.thread is not None:
                    return event.thread
        return None

    def _first_thread(self) -> ObjectID:
        threads = self.commands.all_threads()
        if not threads:
            raise ProtocolError("the remote VM reports no threads")
        return threads[0]

    #
    # Resolution
    #
    def resolve_class(self, signature: str) -> ReferenceTypeID:
        """Resolve a class, loading it through Class.forName if it is not loaded yet."""
        try:
            return self.cache.resolve_class(signature)
        except ResolutionError:
            if not self.config.load_classes or not signature.startswith("L"):
                raise
        return self._load_class(signature)

    def _load_class(self, signature: str) -> ReferenceTypeID:
        name = _class_name(signature)
        logger.info("Loading %s through Class.forName", name)
        clazz = self.cache.resolve_class(CLASS_SIGNATURE)
        for_name = self.cache.resolve_method(clazz, *FOR_NAME)
        name_string = self.commands.create_string(name)
        result = self.commands.invoke_static(
            clazz,
            self._require_thread(),
            for_name,
            [Value.object(name_string, Tag.STRING)],
            INVOKE_SINGLE_THREADED,
        )
        try:
            class_object = self._returned_object(result, "Class.forName")
        except RemoteInvocationError as exc:
            if exc.exception_class != CLASS_NOT_FOUND:
                raise
            raise ResolutionError(f"class {signature} cannot be found in the remote VM") from exc
        type_id = self.commands.reflected_type(class_object)
        self.cache.store_class(signature, type_id)
        return type_id

    def big_integer(self) -> ReferenceTypeID:
        return self.resolve_class(BIG_INTEGER_SIGNATURE)

    #
    # Operations
    #
    def box_integer(self, n: int) -> ObjectID:
        """Create a remote BigInteger through BigInteger.valueOf(long)."""
        logger.info("Constructing BigInteger from %d", n)
        clazz = self.big_integer()
        method = self.cache.resolve_method(clazz, *VALUE_OF)
        return self._invoke_static(clazz, method, [Value.long(n)], "BigInteger.valueOf")

    def invoke_binary_op(self, op: str, left: ObjectID, right: ObjectID) -> ObjectID:
        """Call left.<op>(right) for op in add/subtract/multiply/divide."""
        if op not in BINARY_OPERATIONS:
            raise ValueError(f"unsupported operation {op!r}")
        logger.info("Invoking BigInteger.%s", op)
        clazz = self.big_integer()
        method = self.cache.resolve_method(clazz, op, BINARY_DESCRIPTOR)
        return self._invoke_instance(left, clazz, method, [Value.object(right)], f"BigInteger.{op}")

    def stringify(self, obj: ObjectID) -> str:
        """Call obj.toString() remotely and read back the characters."""
        logger.info("Calling toString()")
        clazz = self.big_integer()
        method = self.cache.resolve_method(clazz, *TO_STRING)
        string = self._invoke_instance(obj, clazz, method, [], "BigInteger.toString")
        return self.commands.string_value(string)

    def new_array(self, array_signature: str, values: list[Value]) -> ObjectID:
        """Construct a remote array of the given type and fill it with values.

        Not needed by arithmetic, whose arguments travel as the tagged
        argument list of the invoke commands; kept for callers that must
        hand a real Object[] to a remote method.
        """
        array_type = self.cache.resolve_class(array_signature)
        array = self.commands.new_array(array_type, len(values))
        if values:
            self.commands.set_array_values(array, 0, values)
        return array

    #
    # Invocation helpers
    #
    def _require_thread(self) -> ObjectID:
        if self.thread is None:
            raise ProtocolError("no invoking thread; call attach() first")
        return self.thread

    def _invoke_static(
        self, clazz: ReferenceTypeID, method: MethodID, arguments: list[Value], label: str
    ) -> ObjectID:
        result = self.commands.invoke_static(
            clazz, self._require_thread(), method, arguments, INVOKE_SINGLE_THREADED
        )
        return self._returned_object(result, label)

    def _invoke_instance(
        self,
        obj: ObjectID,
        clazz: ReferenceTypeID,
        method: MethodID,
        arguments: list[Value],
        label: str,
    ) -> ObjectID:
        result = self.commands.invoke_instance(
            obj, self._require_thread(), clazz, method, arguments, INVOKE_SINGLE_THREADED
        )
        return self._returned_object(result, label)

    def _returned_object(self, result: InvokeResult, label: str) -> ObjectID:
        if not result.exception.is_null:
            raise self._remote_exception(result.exception, label)
        value = result.return_value
        if not value.is_object or value.value.is_null:
            raise ProtocolError(f"{label} returned {value.tag!r} {value.value!r}, expected an object")
        return value.value

    def _remote_exception(self, exception: ObjectID, label: str) -> RemoteInvocationError:
        exception_class = _class_name(
            self.commands.signature(self.commands.reference_type(exception))
        )
        throwable = self.cache.resolve_class(THROWABLE_SIGNATURE)
        get_message = self.cache.resolve_method(throwable, *GET_MESSAGE)
        result = self.commands.invoke_instance(
            exception, self._require_thread(), throwable, get_message, [], INVOKE_SINGLE_THREADED
        )
        message = None
        if result.exception.is_null and result.return_value.is_object:
            if not result.return_value.value.is_null:
                message = self.commands.string_value(result.return_value.value)
        logger.info("%s threw %s: %s", label, exception_class, message)
        return RemoteInvocationError(label, exception_class, message)
