import asyncio
from enum import Enum
from typing import TYPE_CHECKING
from dataclasses import dataclass, field


if TYPE_CHECKING:
    from tcpserve.core.engine import Acceptor
    from tcpserve.core.protocol import Stream


class ServerState(Enum):
    CONFIGURED  = "configured"
    LISTENING   = "listening"
    STOPPED     = "stopped"


@dataclass
class EngineState:
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    stopping: bool = False
    acceptors: "list[Acceptor]" = field(default_factory=list)
    connections: "set[Stream]" = field(default_factory=set)
