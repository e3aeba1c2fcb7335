import threading
import uuid
from typing import TypeAlias

from tcpserve.core.exception import ConnectionNotFound
from tcpserve.core.types_ import Stream

ConnectionID: TypeAlias = str


class ConnectionRegistry:
    """
    Maps opaque connection ids to the live stream handles owned by the engine.

    Ids are random uuid4 tokens minted on accept and released on the terminal
    ``close`` event. All access goes through one lock so acceptors running on
    several threads can share a registry.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[ConnectionID, Stream] = {}

    def register(self, stream: Stream) -> ConnectionID:
        with self._lock:
            connection_id = uuid.uuid4().hex
            while connection_id in self._streams:
                connection_id = uuid.uuid4().hex

            self._streams[connection_id] = stream
            return connection_id

    def resolve(self, connection_id: ConnectionID) -> Stream:
        with self._lock:
            try:
                return self._streams[connection_id]
            except KeyError:
                raise ConnectionNotFound(connection_id) from None

    def release(self, connection_id: ConnectionID) -> Stream:
        with self._lock:
            try:
                return self._streams.pop(connection_id)
            except KeyError:
                raise ConnectionNotFound(connection_id) from None

    def ids(self) -> list[ConnectionID]:
        with self._lock:
            return list(self._streams)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)
