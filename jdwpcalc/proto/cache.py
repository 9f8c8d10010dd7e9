"""Memoized class and method lookups for one connection."""

import logging
from typing import TYPE_CHECKING

from .types import MethodID, ReferenceTypeID

if TYPE_CHECKING:
    from .commands import CommandClient

logger = logging.getLogger(__name__)

MethodKey = tuple[ReferenceTypeID, str, str | None]


class ResolutionError(RuntimeError):
    """Raised when a class or method cannot be found in the remote VM."""


def type_signature(class_name: str) -> str:
    """Convert a binary class name to a JNI type signature.

    >>> type_signature("java.math.BigInteger")
    'Ljava/math/BigInteger;'
    """
    return "L" + class_name.replace(".", "/") + ";"


class IdentifierCache:
    """Resolves ReferenceTypeIDs by signature and MethodIDs by (type, name, descriptor).

    A key is looked up remotely at most once while it resolves; failed
    lookups are not remembered, so a later call asks the VM again.
    Handles are only meaningful for the connection that produced them, so
    the connection clears the cache when it closes.
    """

    def __init__(self, commands: "CommandClient") -> None:
        self._commands = commands
        self._classes: dict[str, ReferenceTypeID] = {}
        self._methods: dict[MethodKey, MethodID] = {}
        self.lookups = 0

    def __len__(self) -> int:
        return len(self._classes) + len(self._methods)

    def resolve_class(self, signature: str) -> ReferenceTypeID:
        cached = self._classes.get(signature)
        if cached is not None:
            return cached

        self.lookups += 1
        classes = self._commands.classes_by_signature(signature)
        if not classes:
            raise ResolutionError(f"class {signature} is not loaded in the remote VM")
        type_id = classes[0].type_id
        logger.debug("resolved class %s -> %#x", signature, type_id.id)
        self._classes[signature] = type_id
        return type_id

    def store_class(self, signature: str, type_id: ReferenceTypeID) -> None:
        """Record a class resolved by other means (e.g. loaded through Class.forName)."""
        self._classes[signature] = type_id

    def resolve_method(
        self, type_id: ReferenceTypeID, name: str, descriptor: str | None = None
    ) -> MethodID:
        key = (type_id, name, descriptor)
        cached = self._methods.get(key)
        if cached is not None:
            return cached

        self.lookups += 1
        matches = [
            method
            for method in self._commands.methods(type_id)
            if method.name == name and (descriptor is None or method.signature == descriptor)
        ]
        if not matches:
            raise ResolutionError(f"method {name}{descriptor or ''} not found on type {type_id.id:#x}")
        if len(matches) > 1:
            overloads = ", ".join(name + method.signature for method in matches)
            raise ResolutionError(f"method {name} is overloaded ({overloads}); give a descriptor")

        method_id = matches[0].method_id
        logger.debug("resolved method %s%s -> %#x", name, descriptor or "", method_id.id)
        self._methods[key] = method_id
        return method_id

    def clear(self) -> None:
        self._classes.clear()
        self._methods.clear()
