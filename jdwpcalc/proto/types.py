"""Runtime type descriptors for the JDWP wire protocol.

Identifiers handed out by the remote VM are opaque; they are wrapped in
small frozen dataclasses so a MethodID can never be passed where an
ObjectID is expected, and so they can be used as cache keys.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

REPLY_FLAG = 0x80

INVOKE_SINGLE_THREADED = 0x01


@dataclass(frozen=True, slots=True)
class Command:
    """A (command set, command) pair with its JDWP name for logging."""

    command_set: int
    command: int
    name: str

    def __str__(self) -> str:
        return f"{self.name} ({self.command_set}.{self.command})"


VM_VERSION = Command(1, 1, "VirtualMachine.Version")
VM_CLASSES_BY_SIGNATURE = Command(1, 2, "VirtualMachine.ClassesBySignature")
VM_ALL_THREADS = Command(1, 4, "VirtualMachine.AllThreads")
VM_ID_SIZES = Command(1, 7, "VirtualMachine.IDSizes")
VM_RESUME = Command(1, 9, "VirtualMachine.Resume")
VM_CREATE_STRING = Command(1, 11, "VirtualMachine.CreateString")
REFERENCE_TYPE_SIGNATURE = Command(2, 1, "ReferenceType.Signature")
REFERENCE_TYPE_METHODS = Command(2, 5, "ReferenceType.Methods")
CLASS_TYPE_INVOKE_METHOD = Command(3, 3, "ClassType.InvokeMethod")
ARRAY_TYPE_NEW_INSTANCE = Command(4, 1, "ArrayType.NewInstance")
OBJECT_REFERENCE_REFERENCE_TYPE = Command(9, 1, "ObjectReference.ReferenceType")
OBJECT_REFERENCE_INVOKE_METHOD = Command(9, 6, "ObjectReference.InvokeMethod")
STRING_REFERENCE_VALUE = Command(10, 1, "StringReference.Value")
ARRAY_REFERENCE_SET_VALUES = Command(13, 3, "ArrayReference.SetValues")
EVENT_REQUEST_SET = Command(15, 1, "EventRequest.Set")
CLASS_OBJECT_REFLECTED_TYPE = Command(17, 1, "ClassObjectReference.ReflectedType")
EVENT_COMPOSITE = Command(64, 100, "Event.Composite")

COMMANDS = {
    (command.command_set, command.command): command
    for command in (
        VM_VERSION,
        VM_CLASSES_BY_SIGNATURE,
        VM_ALL_THREADS,
        VM_ID_SIZES,
        VM_RESUME,
        VM_CREATE_STRING,
        REFERENCE_TYPE_SIGNATURE,
        REFERENCE_TYPE_METHODS,
        CLASS_TYPE_INVOKE_METHOD,
        ARRAY_TYPE_NEW_INSTANCE,
        OBJECT_REFERENCE_REFERENCE_TYPE,
        OBJECT_REFERENCE_INVOKE_METHOD,
        STRING_REFERENCE_VALUE,
        ARRAY_REFERENCE_SET_VALUES,
        EVENT_REQUEST_SET,
        CLASS_OBJECT_REFLECTED_TYPE,
        EVENT_COMPOSITE,
    )
}


class EventKind(IntEnum):
    CLASS_PREPARE = 8
    VM_START = 90
    VM_DEATH = 99


class SuspendPolicy(IntEnum):
    NONE = 0
    EVENT_THREAD = 1
    ALL = 2


class ModKind(IntEnum):
    SOURCE_NAME_MATCH = 12


class Tag:
    """Single-byte JDWP value tags."""

    ARRAY = b"["
    BYTE = b"B"
    CHAR = b"C"
    OBJECT = b"L"
    FLOAT = b"F"
    DOUBLE = b"D"
    INT = b"I"
    LONG = b"J"
    SHORT = b"S"
    VOID = b"V"
    BOOLEAN = b"Z"
    STRING = b"s"
    THREAD = b"t"
    THREAD_GROUP = b"g"
    CLASS_LOADER = b"l"
    CLASS_OBJECT = b"c"


# Tag -> struct format for primitives
PRIMITIVE_FORMATS = {
    Tag.BYTE: "b",
    Tag.CHAR: "H",
    Tag.FLOAT: "f",
    Tag.DOUBLE: "d",
    Tag.INT: "i",
    Tag.LONG: "q",
    Tag.SHORT: "h",
    Tag.BOOLEAN: "?",
}

OBJECT_TAGS = frozenset(
    [
        Tag.ARRAY,
        Tag.OBJECT,
        Tag.STRING,
        Tag.THREAD,
        Tag.THREAD_GROUP,
        Tag.CLASS_LOADER,
        Tag.CLASS_OBJECT,
    ]
)

# Standard JDWP error codes that can come back from the commands used here
ERROR_NAMES = {
    10: "INVALID_THREAD",
    13: "THREAD_NOT_SUSPENDED",
    20: "INVALID_OBJECT",
    21: "INVALID_CLASS",
    22: "CLASS_NOT_PREPARED",
    23: "INVALID_METHODID",
    34: "TYPE_MISMATCH",
    99: "NOT_IMPLEMENTED",
    112: "VM_DEAD",
    113: "INTERNAL",
    502: "INVALID_TAG",
    503: "ALREADY_INVOKING",
    504: "INVALID_INDEX",
    506: "INVALID_STRING",
    508: "INVALID_ARRAY",
    511: "NATIVE_METHOD",
    512: "INVALID_COUNT",
}


@dataclass(frozen=True, slots=True)
class IDSizes:
    """Identifier widths negotiated once per connection."""

    field_id_size: int
    method_id_size: int
    object_id_size: int
    reference_type_id_size: int
    frame_id_size: int


@dataclass(frozen=True, slots=True)
class ReferenceTypeID:
    id: int


@dataclass(frozen=True, slots=True)
class MethodID:
    id: int


@dataclass(frozen=True, slots=True)
class ObjectID:
    id: int

    @property
    def is_null(self) -> bool:
        return self.id == 0


NULL_OBJECT = ObjectID(0)


@dataclass(frozen=True, slots=True)
class Value:
    """A tagged JDWP value.

    Primitives carry a Python int/float/bool; object-like tags carry an ObjectID.
    """

    tag: bytes
    value: Any = None

    @classmethod
    def long(cls, n: int) -> "Value":
        return cls(Tag.LONG, n)

    @classmethod
    def object(cls, obj: ObjectID, tag: bytes = Tag.OBJECT) -> "Value":
        return cls(tag, obj)

    @property
    def is_object(self) -> bool:
        return self.tag in OBJECT_TAGS


@dataclass(frozen=True, slots=True)
class VersionInfo:
    description: str
    jdwp_major: int
    jdwp_minor: int
    vm_version: str
    vm_name: str


@dataclass(frozen=True, slots=True)
class ClassInfo:
    ref_type_tag: int
    type_id: ReferenceTypeID
    status: int


@dataclass(frozen=True, slots=True)
class MethodInfo:
    method_id: MethodID
    name: str
    signature: str
    mod_bits: int


@dataclass(frozen=True, slots=True)
class InvokeResult:
    return_value: Value
    exception: ObjectID


@dataclass(frozen=True, slots=True)
class Event:
    kind: int
    request_id: int
    thread: ObjectID | None = None
    signature: str | None = None


@dataclass(frozen=True, slots=True)
class EventSet:
    suspend_policy: int
    events: tuple[Event, ...] = field(default_factory=tuple)
