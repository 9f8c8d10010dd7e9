"""Connection to a JDWP agent.

Responsibilities:
    * Exchange the handshake and negotiate identifier sizes.
    * Allocate packet ids and correlate replies with outstanding requests.
    * Drain inbound traffic on a reader thread so a dropped connection or a
      VMDeath event fails the waiting request instead of hanging it.
"""

import logging
import queue
import socket
import threading
from dataclasses import dataclass

from .cache import IdentifierCache
from .commands import CommandClient, decode_event_set
from .errors import CommandError, ConnectError, ProtocolError
from .framing import HANDSHAKE, Framer, FramingError, Packet, encode
from .serialization import PacketReader, PacketWriter, SerializationError
from .types import EVENT_COMPOSITE, VM_ID_SIZES, Command, EventKind, EventSet, IDSizes

logger = logging.getLogger(__name__)

_MAX_PACKET_ID = 0xFFFFFFFF


@dataclass
class ConnectionConfig:
    host: str = "127.0.0.1"
    port: int = 5005
    connect_timeout: float = 2.0
    handshake_timeout: float = 5.0
    request_timeout: float = 10.0


class _PendingReply:
    """Slot in the pending-reply table, filled in by the reader thread."""

    __slots__ = ("command", "done", "reply", "error")

    def __init__(self, command: Command) -> None:
        self.command = command
        self.done = threading.Event()
        self.reply: Packet | None = None
        self.error: ProtocolError | None = None

    def resolve(self, reply: Packet) -> None:
        self.reply = reply
        self.done.set()

    def fail(self, error: ProtocolError) -> None:
        self.error = error
        self.done.set()


class Connection:
    """One JDWP session over one stream socket.

    Requests are strictly sequential: send_request holds a lock from
    transmission until the matching reply (or failure) arrives.
    """

    def __init__(self, sock: socket.socket, config: ConnectionConfig | None = None) -> None:
        self.config = config or ConnectionConfig()
        self.id_sizes: IDSizes | None = None
        self.requests_sent = 0
        self.commands = CommandClient(self)
        self.cache = IdentifierCache(self.commands)

        self._sock = sock
        self._framer = Framer()
        self._lock = threading.Lock()
        self._request_lock = threading.Lock()
        self._next_id = 1
        self._pending: dict[int, _PendingReply] = {}
        self._events: queue.Queue[Packet | None] = queue.Queue()
        self._reader_thread: threading.Thread | None = None
        self._closed = False
        self._close_reason = ""

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    #
    # Session setup
    #
    def open(self) -> "Connection":
        """Handshake, start the reader and negotiate ID sizes."""
        try:
            self.handshake()
            self.start()
            self.negotiate()
        except ConnectError:
            self.close()
            raise
        return self

    def handshake(self) -> None:
        self._sock.settimeout(self.config.handshake_timeout)
        try:
            self._sock.sendall(HANDSHAKE)
            received = self._recv_exact(len(HANDSHAKE))
        except TimeoutError as exc:
            raise ConnectError(
                f"no handshake reply within {self.config.handshake_timeout:g}s"
            ) from exc
        except OSError as exc:
            raise ConnectError(f"handshake failed: {exc}") from exc
        if received != HANDSHAKE:
            raise ConnectError(f"unexpected handshake reply {received!r}")
        self._sock.settimeout(None)
        logger.debug("handshake complete")

    def start(self) -> None:
        self._reader_thread = threading.Thread(
            target=self._reader_loop, name="jdwp-reader", daemon=True
        )
        self._reader_thread.start()

    def negotiate(self) -> IDSizes:
        if self.id_sizes is not None:
            raise ProtocolError("identifier sizes are already negotiated")
        try:
            reply = self.send_request(VM_ID_SIZES)
            self.id_sizes = PacketReader.id_sizes(reply.payload)
        except (ProtocolError, CommandError, SerializationError) as exc:
            raise ConnectError(f"ID size negotiation failed: {exc}") from exc
        logger.debug("negotiated %s", self.id_sizes)
        return self.id_sizes

    def writer(self) -> PacketWriter:
        return PacketWriter(self.id_sizes)

    def reader(self, payload: bytes) -> PacketReader:
        return PacketReader(payload, self.id_sizes)

    #
    # Requests
    #
    def send_request(
        self, command: Command, payload: bytes = b"", timeout: float | None = None
    ) -> Packet:
        """Send one command and block until its reply arrives."""
        with self._request_lock:
            with self._lock:
                if self._closed:
                    raise ProtocolError(f"connection is closed ({self._close_reason})")
                if self._next_id > _MAX_PACKET_ID:
                    raise ProtocolError("packet ids exhausted")
                packet_id = self._next_id
                self._next_id += 1
                slot = _PendingReply(command)
                self._pending[packet_id] = slot
                self.requests_sent += 1

            logger.debug("-> %s id=%d (%d bytes)", command, packet_id, len(payload))
            try:
                self._sock.sendall(encode(Packet.request(packet_id, command, payload)))
            except (OSError, FramingError) as exc:
                error = ProtocolError(f"sending {command.name} failed: {exc}")
                self._shutdown(error)
                raise error from exc

            wait = self.config.request_timeout if timeout is None else timeout
            if not slot.done.wait(wait):
                error = ProtocolError(f"no reply to {command.name} (id {packet_id}) within {wait:g}s")
                self._shutdown(error)
                raise error

        if slot.error is not None:
            raise slot.error
        reply = slot.reply
        if reply is None:
            raise ProtocolError(f"{command.name} (id {packet_id}) completed without a reply")
        logger.debug("<- reply id=%d error=%d (%d bytes)", reply.id, reply.error_code, len(reply.payload))
        if reply.error_code:
            raise CommandError(command, reply.error_code)
        return reply

    #
    # Events
    #
    def next_event(self, timeout: float) -> EventSet:
        """Block until the VM sends an event set."""
        try:
            packet = self._events.get(timeout=timeout)
        except queue.Empty:
            raise ProtocolError(f"no event from the VM within {timeout:g}s") from None
        return self._decode_event(packet)

    def poll_event(self) -> EventSet | None:
        """Return an already-received event set, if any."""
        try:
            packet = self._events.get_nowait()
        except queue.Empty:
            return None
        return self._decode_event(packet)

    def _decode_event(self, packet: Packet | None) -> EventSet:
        if packet is None:
            # keep the sentinel for the next caller
            self._events.put(None)
            raise ProtocolError(f"connection is closed ({self._close_reason})")
        try:
            return decode_event_set(packet.payload, self.id_sizes)
        except SerializationError as exc:
            raise ProtocolError(f"malformed event packet: {exc}") from exc

    #
    # Shutdown
    #
    def close(self) -> None:
        self._shutdown(ProtocolError("closed by client"))
        thread = self._reader_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _shutdown(self, error: ProtocolError) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._close_reason = str(error)
            pending = list(self._pending.values())
            self._pending.clear()

        for slot in pending:
            slot.fail(error)
        self._events.put(None)
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()
        self.cache.clear()
        logger.debug("connection closed: %s", error)

    #
    # Reader thread
    #
    def _recv_exact(self, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = self._sock.recv(size - len(data))
            if not chunk:
                raise ConnectError("connection closed during handshake")
            data += chunk
        return data

    def _reader_loop(self) -> None:
        while True:
            try:
                chunk = self._sock.recv(4096)
            except OSError as exc:
                self._shutdown(ProtocolError(f"connection lost: {exc}"))
                return
            if not chunk:
                self._shutdown(ProtocolError("connection closed by the remote VM"))
                return

            self._framer.append_buffer(chunk)
            try:
                while (packet := self._framer.decode_frame()) is not None:
                    self._dispatch(packet)
            except FramingError as exc:
                self._shutdown(ProtocolError(f"malformed packet: {exc}"))
                return

    def _dispatch(self, packet: Packet) -> None:
        if packet.is_reply:
            with self._lock:
                slot = self._pending.pop(packet.id, None)
                waiting = bool(self._pending)
            if slot is not None:
                slot.resolve(packet)
                return
            error = ProtocolError(f"reply id {packet.id} does not match any outstanding request")
            if waiting:
                self._shutdown(error)
            else:
                logger.warning("%s; dropped", error)
            return

        if (packet.command_set, packet.command) == (
            EVENT_COMPOSITE.command_set,
            EVENT_COMPOSITE.command,
        ):
            self._handle_event(packet)
            return
        logger.warning(
            "ignoring unexpected command %d.%d from the VM", packet.command_set, packet.command
        )

    def _handle_event(self, packet: Packet) -> None:
        self._events.put(packet)
        if self.id_sizes is None:
            # decoded later, once identifier widths are known
            return
        try:
            events = decode_event_set(packet.payload, self.id_sizes)
        except SerializationError as exc:
            logger.warning("malformed event packet: %s", exc)
            return
        if any(event.kind == EventKind.VM_DEATH for event in events.events):
            self._shutdown(ProtocolError("the remote VM died"))


def connect(config: ConnectionConfig | None = None) -> Connection:
    """Open a TCP connection to a suspended JDWP agent and set up the session."""
    config = config or ConnectionConfig()
    try:
        sock = socket.create_connection((config.host, config.port), timeout=config.connect_timeout)
    except OSError as exc:
        raise ConnectError(f"cannot reach {config.host}:{config.port}: {exc}") from exc
    logger.info("Connected to %s:%d", config.host, config.port)
    return Connection(sock, config).open()
