import asyncio
import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

from labgw.commons.config import load_settings
from labgw.commons.logger import setup_logging
from labgw.commons.types import ListenerCfg
from labgw.helpers.tcp_transport import MllpSender
from labgw.services.gateway_service import GatewayService, replay_capture
from labgw.services.sink import CollectingSink

app = typer.Typer(add_completion=False, help="Lab Instrument Protocol Gateway (HL7/MLLP + ASTM)")


def _load(config: Optional[str]):
    try:
        return load_settings(config)
    except ValidationError as ve:
        typer.echo(f"Configuración inválida:\n{ve}", err=True)
        raise typer.Exit(code=2)
    except FileNotFoundError as ex:
        typer.echo(f"No se encontró la configuración: {ex.filename}", err=True)
        raise typer.Exit(code=2)


@app.command()
def run(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Ruta al settings.yaml"),
    listener: List[str] = typer.Option([], "--listener", "-l", help="Solo estos listeners"),
):
    """Arranca todos los listeners configurados (TCP, serie, carpeta)."""
    cfg = _load(config)
    logger = setup_logging(cfg.logging.root, os.getenv("LOG_LEVEL", cfg.logging.level))
    logger.log("INFO", f"Iniciando {cfg.app.name} (debug={cfg.app.debug})")
    svc = GatewayService(cfg)
    try:
        asyncio.run(svc.run(listener or None))
    except ValueError as ex:
        logger.error(str(ex))
        raise typer.Exit(code=2)
    except KeyboardInterrupt:
        logger.info("Detenido por el usuario")


@app.command()
def send(
    path: Path = typer.Argument(..., exists=True, readable=True, help="Archivo HL7 (segmentos por línea)"),
    host: str = typer.Option("127.0.0.1", help="Host destino"),
    port: int = typer.Option(7007, help="Puerto destino"),
    timeout: float = typer.Option(5.0, help="Segundos de espera del ACK"),
):
    """Envía un mensaje HL7 envuelto en MLLP y muestra el ACK recibido."""
    text = path.read_text(encoding="utf-8")
    # Los segmentos HL7 van separados por CR en el cable
    hl7 = "\r".join(line.rstrip("\r") for line in text.splitlines() if line.strip()) + "\r"
    ack = asyncio.run(MllpSender(host, port, timeout).send(hl7))
    if ack is None:
        typer.echo("Sin ACK")
        raise typer.Exit(code=1)
    typer.echo(ack.replace("\r", "\n"))


@app.command()
def replay(
    path: Path = typer.Argument(..., exists=True, readable=True, help="Captura cruda del equipo"),
    protocol: str = typer.Option("auto", help="hl7 | astm | auto"),
    verify_checksum: bool = typer.Option(False, help="Verificar checksum ASTM"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Ruta al settings.yaml"),
):
    """Pasa una captura por el motor sin red e imprime los registros como JSON."""
    cfg = _load(config) if config else load_settings({})
    try:
        lst = ListenerCfg(name="replay", protocol=protocol, verify_checksum=verify_checksum)
    except ValidationError as ve:
        typer.echo(f"Parámetros inválidos:\n{ve}", err=True)
        raise typer.Exit(code=2)
    sink = CollectingSink()
    asyncio.run(replay_capture(path.read_bytes(), lst, cfg, sink))
    typer.echo(json.dumps([asdict(r) for r in sink.records], ensure_ascii=False, indent=2))


if __name__ == "__main__":
    app()
