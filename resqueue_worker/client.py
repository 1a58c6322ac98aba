import logging
import socket
import struct
from dataclasses import dataclass, field
from typing import Optional

from resqueue.domain.errors import FastCGICommunicationError, FastCGITimeoutError

logger = logging.getLogger(__name__)

FCGI_VERSION_1 = 1

FCGI_BEGIN_REQUEST = 1
FCGI_END_REQUEST = 3
FCGI_PARAMS = 4
FCGI_STDIN = 5
FCGI_STDOUT = 6
FCGI_STDERR = 7

FCGI_RESPONDER = 1
FCGI_KEEP_CONN = 1

FCGI_HEADER = struct.Struct("!BBHHBx")
FCGI_BEGIN_BODY = struct.Struct("!HB5x")

MAX_CONTENT_LENGTH = 0xFFFF

@dataclass
class FastCGIResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    stderr: str = ""

def encode_record(record_type: int, request_id: int, content: bytes = b"") -> bytes:
    padding = -len(content) % 8
    return (
        FCGI_HEADER.pack(FCGI_VERSION_1, record_type, request_id, len(content), padding)
        + content
        + b"\x00" * padding
    )

def _encode_length(length: int) -> bytes:
    if length < 128:
        return bytes([length])
    return struct.pack("!I", length | 0x80000000)

def encode_params(params: dict[str, str]) -> bytes:
    out = bytearray()
    for name, value in params.items():
        name_b = str(name).encode("utf-8")
        value_b = str(value).encode("utf-8")
        out += _encode_length(len(name_b)) + _encode_length(len(value_b)) + name_b + value_b
    return bytes(out)

def _stream(record_type: int, request_id: int, data: bytes) -> bytes:
    """Splits `data` into records and terminates the stream with an empty one."""
    out = bytearray()
    for i in range(0, len(data), MAX_CONTENT_LENGTH):
        out += encode_record(record_type, request_id, data[i:i + MAX_CONTENT_LENGTH])
    out += encode_record(record_type, request_id)
    return bytes(out)

def parse_response(stdout: bytes, stderr: bytes) -> FastCGIResponse:
    """Splits CGI output into headers and body; the `Status:` header sets the code."""
    text = stdout.decode("utf-8", errors="replace")
    for separator in ("\r\n\r\n", "\n\n"):
        if separator in text:
            head, body = text.split(separator, 1)
            break
    else:
        head, body = "", text

    headers = {}
    for line in head.splitlines():
        if ":" in line:
            name, value = line.split(":", 1)
            headers[name.strip().lower()] = value.strip()

    status_code = 200
    if "status" in headers:
        try:
            status_code = int(headers["status"].split()[0])
        except (ValueError, IndexError):
            status_code = 0

    return FastCGIResponse(
        status_code=status_code,
        headers=headers,
        body=body,
        stderr=stderr.decode("utf-8", errors="replace"),
    )

class FastCGIClient:
    """
    Minimal FastCGI client for one outstanding request at a time, over TCP
    or a unix socket. A read timeout raises FastCGITimeoutError and keeps
    the request pending, so `get_response()` can be called again.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        path: Optional[str] = None,
        timeout: float = 30.0,
        keep_alive: bool = True,
    ):
        if path is None and (host is None or port is None):
            raise ValueError("Either host and port or a socket path is required")
        self.host = host
        self.port = port
        self.path = path
        self.timeout = timeout
        self.keep_alive = keep_alive

        self._sock: Optional[socket.socket] = None
        self._buffer = bytearray()
        self._request_id = 0
        self._pending = False
        self._stdout = bytearray()
        self._stderr = bytearray()

    @classmethod
    def from_location(cls, location: str, timeout: float = 30.0) -> "FastCGIClient":
        """A location with a colon is host:port (TCP), anything else a unix socket path."""
        if ":" in location:
            host, port = location.split(":", 1)
            return cls(host=host, port=int(port), timeout=timeout)
        return cls(path=location, timeout=timeout)

    def __repr__(self):
        where = self.path or f"{self.host}:{self.port}"
        return f"<FastCGIClient {where}>"

    def _connect(self) -> socket.socket:
        if self._sock is not None:
            return self._sock
        try:
            if self.path:
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                sock.settimeout(self.timeout)
                sock.connect(self.path)
            else:
                sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise FastCGICommunicationError(f"Unable to connect to {self!r}: {e}") from e
        self._sock = sock
        self._buffer = bytearray()
        return sock

    def begin_request(self, params: dict[str, str], body: bytes = b"") -> int:
        """Sends a complete request and returns its id."""
        if self._pending:
            raise FastCGICommunicationError("A request is already in progress")

        sock = self._connect()
        self._request_id = self._request_id % 0xFFFF + 1
        request_id = self._request_id

        flags = FCGI_KEEP_CONN if self.keep_alive else 0
        message = (
            encode_record(FCGI_BEGIN_REQUEST, request_id, FCGI_BEGIN_BODY.pack(FCGI_RESPONDER, flags))
            + _stream(FCGI_PARAMS, request_id, encode_params(params))
            + _stream(FCGI_STDIN, request_id, body)
        )
        try:
            sock.sendall(message)
        except OSError as e:
            self.close()
            raise FastCGICommunicationError(f"Failed to send request to {self!r}: {e}") from e

        self._pending = True
        self._stdout = bytearray()
        self._stderr = bytearray()
        return request_id

    def _fill(self, size: int):
        while len(self._buffer) < size:
            try:
                chunk = self._sock.recv(65536)
            except TimeoutError as e:
                raise FastCGITimeoutError(f"Read timed out after {self.timeout}s") from e
            except OSError as e:
                self.close()
                raise FastCGICommunicationError(f"Read failed: {e}") from e
            if not chunk:
                self.close()
                raise FastCGICommunicationError("Connection closed by FastCGI server")
            self._buffer += chunk

    def _read_record(self) -> tuple[int, int, bytes]:
        # Bytes stay buffered until a full record is available, so a timeout loses nothing
        self._fill(FCGI_HEADER.size)
        version, record_type, request_id, length, padding = FCGI_HEADER.unpack_from(self._buffer)
        total = FCGI_HEADER.size + length + padding
        self._fill(total)
        content = bytes(self._buffer[FCGI_HEADER.size:FCGI_HEADER.size + length])
        del self._buffer[:total]
        return record_type, request_id, content

    def get_response(self) -> FastCGIResponse:
        if not self._pending or self._sock is None:
            raise FastCGICommunicationError("No request in progress")

        while True:
            record_type, request_id, content = self._read_record()
            if request_id != self._request_id:
                logger.debug(f"Ignoring record for stale request {request_id}")
                continue
            if record_type == FCGI_STDOUT:
                self._stdout += content
            elif record_type == FCGI_STDERR:
                self._stderr += content
            elif record_type == FCGI_END_REQUEST:
                break

        self._pending = False
        response = parse_response(bytes(self._stdout), bytes(self._stderr))
        if not self.keep_alive:
            self.close()
        return response

    def close(self):
        self._pending = False
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug(f"Error closing FastCGI socket: {e}")
            self._sock = None
        self._buffer = bytearray()
