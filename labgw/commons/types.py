from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AppCfg(_Frozen):
    name: str = "lab-gateway"
    debug: bool = False


class LoggingCfg(_Frozen):
    root: str = "logs"
    level: str = "INFO"


class SinkCfg(_Frozen):
    # Vacío => solo se registran los resultados en el log
    endpoint: str = ""
    timeout_sec: float = 10.0

    @field_validator("endpoint")
    @classmethod
    def _http_only(cls, v: str):
        v = (v or "").strip()
        if v and not v.startswith(("http://", "https://")):
            raise ValueError(f"endpoint debe ser http(s): {v}")
        return v

    @field_validator("timeout_sec")
    @classmethod
    def _positive(cls, v: float):
        if v <= 0:
            raise ValueError("timeout_sec debe ser > 0")
        return v


class ClientCfg(_Frozen):
    retry_sec: float = 5.0  # espera tras un connect fallido
    reconnect_sec: float = 2.0  # espera tras cierre de la conexión


class ListenerCfg(_Frozen):
    name: str
    protocol: Literal["hl7", "astm", "auto"] = "auto"
    transport: Literal["tcp", "serial", "file"] = "tcp"
    mode: Literal["server", "client"] = "server"
    host: str = "0.0.0.0"
    port: int = 7007
    device: str = ""
    baudrate: int = 9600
    inbox: str = ""
    glob: str = "*.raw"
    verify_checksum: bool = False

    @field_validator("port")
    @classmethod
    def _port_range(cls, v: int):
        if not 0 <= v < 65536:
            raise ValueError(f"puerto inválido: {v}")
        return v

    @model_validator(mode="after")
    def _transport_fields(self):
        if self.transport == "serial" and not self.device:
            raise ValueError(f"listener '{self.name}': transport serial requiere 'device'")
        if self.transport == "file" and not self.inbox:
            raise ValueError(f"listener '{self.name}': transport file requiere 'inbox'")
        return self

    @property
    def address(self) -> str:
        if self.transport == "serial":
            return f"{self.device}@{self.baudrate}"
        if self.transport == "file":
            return f"{self.inbox}/{self.glob}"
        return f"{self.host}:{self.port}"


class Settings(_Frozen):
    app: AppCfg = AppCfg()
    logging: LoggingCfg = LoggingCfg()
    sink: SinkCfg = SinkCfg()
    client: ClientCfg = ClientCfg()
    listeners: Tuple[ListenerCfg, ...] = ()

    def listener(self, name: str) -> Optional[ListenerCfg]:
        return next((lst for lst in self.listeners if lst.name == name), None)
