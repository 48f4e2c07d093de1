from datetime import datetime
from pathlib import Path

from loguru import logger


def setup_logging(root: str, level: str = "INFO"):
    logdir = Path(root) / datetime.now().strftime("%Y/%m/%d")
    logdir.mkdir(parents=True, exist_ok=True)
    logfile = logdir / "gateway.log"
    logger.remove()
    logger.add(
        str(logfile),
        rotation="00:00",
        retention="14 days",
        level=level,
        enqueue=True,
        backtrace=True,
        diagnose=True,
    )
    logger.add(lambda m: print(m, end=""), level=level)
    return logger


def hexdump(data: bytes, width: int = 16) -> str:
    """Volcado hex + ASCII para trazas de depuración."""
    lines = []
    for i in range(0, len(data), width):
        chunk = data[i : i + width]
        hexs = " ".join(f"{x:02X}" for x in chunk)
        text = "".join(chr(x) if 32 <= x <= 126 else "." for x in chunk)
        lines.append(f"{i:04X}  {hexs:<{width * 3}}  {text}")
    return "\n".join(lines)
