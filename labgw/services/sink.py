import json
from dataclasses import asdict
from typing import Dict, List, Optional, Sequence, Union

import httpx

from labgw.commons.logger import logger
from labgw.commons.types import SinkCfg
from labgw.parsers.models import Observation, Result

Record = Union[Observation, Result]


def to_payload(records: Sequence[Record]) -> List[Dict]:
    """Lista JSON-serializable, un dict por registro."""
    return [asdict(r) for r in records]


class ResultSink:
    """Destino de los lotes. Debe poder llamarse desde varias sesiones a la vez."""

    async def send(self, records: Sequence[Record]) -> bool:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class LogSink(ResultSink):
    """Sin endpoint configurado: solo deja los resultados en el log."""

    async def send(self, records: Sequence[Record]) -> bool:
        logger.info(f"{len(records)} resultado(s): {json.dumps(to_payload(records), ensure_ascii=False)}")
        return True


class HttpSink(ResultSink):
    """POST JSON al servidor. Sin reintentos: si falla, se registra y se descarta el lote."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def send(self, records: Sequence[Record]) -> bool:
        logger.info(f"Enviando {len(records)} resultado(s) a {self.endpoint}")
        try:
            resp = await self._client.post(self.endpoint, json=to_payload(records))
        except httpx.HTTPError as ex:
            logger.error(f"Servidor inalcanzable ({type(ex).__name__}): {ex}")
            return False
        if resp.is_success:
            logger.info(f"Resultados enviados: {resp.status_code}")
            return True
        logger.error(f"Servidor rechazó el lote: {resp.status_code} {resp.text[:200]}")
        return False

    async def aclose(self) -> None:
        await self._client.aclose()


def make_sink(cfg: SinkCfg) -> ResultSink:
    if cfg.endpoint:
        return HttpSink(cfg.endpoint, cfg.timeout_sec)
    return LogSink()


class CollectingSink(ResultSink):
    """Sink en memoria (replay y pruebas)."""

    def __init__(self):
        self.batches: List[List[Record]] = []

    @property
    def records(self) -> List[Record]:
        return [r for batch in self.batches for r in batch]

    async def send(self, records: Sequence[Record]) -> bool:
        self.batches.append(list(records))
        return True
