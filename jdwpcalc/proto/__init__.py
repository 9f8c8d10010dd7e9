"""JDWP client: framing, connection, identifier cache and reflective invocation."""

from .cache import IdentifierCache as IdentifierCache
from .cache import ResolutionError as ResolutionError
from .commands import CommandClient as CommandClient
from .connection import Connection as Connection
from .connection import ConnectionConfig as ConnectionConfig
from .connection import connect as connect
from .errors import CommandError as CommandError
from .errors import ConnectError as ConnectError
from .errors import ProtocolError as ProtocolError
from .framing import FramingError as FramingError
from .framing import Packet as Packet
from .invoker import ReflectiveInvoker as ReflectiveInvoker
from .invoker import RemoteInvocationError as RemoteInvocationError
from .invoker import SessionConfig as SessionConfig
from .serialization import SerializationError as SerializationError
from .types import IDSizes as IDSizes
from .types import MethodID as MethodID
from .types import ObjectID as ObjectID
from .types import ReferenceTypeID as ReferenceTypeID
from .types import Value as Value
