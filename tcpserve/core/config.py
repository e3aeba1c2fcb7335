import asyncio
from dataclasses import dataclass, field
from typing import Any

from tcpserve.core.model.listener import DEFAULT_BACKLOG

DEFAULT_LISTEN = "tcp://*:3000"
DEFAULT_SERVER_CLASS = "tcpserve.core.engine:AsyncioEngine"


@dataclass
class Config:
    listen: list[str] = field(default_factory=lambda: [DEFAULT_LISTEN])

    backlog: int = DEFAULT_BACKLOG
    inactivity_timeout: float = 15.0
    timeout_graceful_shutdown: float = 5.0

    server_class: str = DEFAULT_SERVER_CLASS
    user: str | None = None
    group: str | None = None

    loop: asyncio.AbstractEventLoop | None = None

    def engine_kwargs(self) -> dict[str, Any]:
        return {
            "loop": self.loop,
            "backlog": self.backlog,
            "inactivity_timeout": self.inactivity_timeout,
            "timeout_graceful_shutdown": self.timeout_graceful_shutdown,
            "user": self.user,
            "group": self.group,
        }
