from contextvars import ContextVar
from pathlib import Path
from typing import Annotated, Any, Self

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource, YamlConfigSettingsSource

from tcpserve.core.config import Config, DEFAULT_LISTEN, DEFAULT_SERVER_CLASS
from tcpserve.core.listen import parse_listen
from tcpserve.core.model.listener import DEFAULT_BACKLOG

_configfile: ContextVar[Path | None] = ContextVar("tcpserve_configfile", default=None)


class TcpServeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TCPSERVE_",
        extra="ignore",
    )

    listen: Annotated[
        list[str],
        Field(
            description=(
                "Locations to listen on, one acceptor per entry.\n"
                "Form: tcp://[host|*]:port[?reuse=1] or\n"
                "      tcps://[host|*]:port?cert=...&key=...[&ca=...][&ciphers=...][&verify=hex]\n"
                "'*' or an empty host binds every interface; port 0 picks an ephemeral port."
            ),
            default_factory=lambda: [DEFAULT_LISTEN],
        )
    ]

    backlog: Annotated[
        int,
        Field(
            description="Maximum number of pending TCP connections per listener.",
            default=DEFAULT_BACKLOG,
            gt=0,
        )
    ]

    inactivity_timeout: Annotated[
        float,
        Field(
            description=(
                "Seconds a connection may stay idle before a 'timeout' event is\n"
                "emitted and the connection is closed. 0 disables the timer."
            ),
            default=15.0,
            ge=0,
        )
    ]

    timeout_graceful_shutdown: Annotated[
        float,
        Field(
            description="Seconds open connections get to close once the server stops.",
            default=5.0,
            ge=0,
        )
    ]

    server_class: Annotated[
        str,
        Field(
            description="Engine implementation, as 'module:Class'.",
            default=DEFAULT_SERVER_CLASS,
        )
    ]

    user: Annotated[
        str | None,
        Field(
            description="User to switch to after the listeners are bound.",
            default=None,
        )
    ]

    group: Annotated[
        str | None,
        Field(
            description="Group to switch to after the listeners are bound.",
            default=None,
        )
    ]

    @field_validator("listen")
    @classmethod
    def validate_listen(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one listen location is required.")
        for spec in v:
            parse_listen(spec)
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        configfile = _configfile.get()
        if configfile is None:
            return init_settings, env_settings
        return init_settings, env_settings, YamlConfigSettingsSource(settings_cls, yaml_file=configfile)

    @classmethod
    def load(cls, configfile: Path | None = None, **values: Any) -> Self:
        """
        Build the settings from keyword values, ``TCPSERVE_*`` environment
        variables and the optional YAML file, in that order of priority.
        """
        token = _configfile.set(configfile)
        try:
            return cls(**values)
        finally:
            _configfile.reset(token)

    def to_config(self) -> Config:
        return Config(
            listen=list(self.listen),
            backlog=self.backlog,
            inactivity_timeout=self.inactivity_timeout,
            timeout_graceful_shutdown=self.timeout_graceful_shutdown,
            server_class=self.server_class,
            user=self.user,
            group=self.group,
        )
