import os
import sys
from typing import Any, Optional

import yaml

from labgw.commons.types import Settings

DEFAULT_CONFIG = "labgw/configs/settings.yaml"


def resource_path(relative_path: str) -> str:
    """Devuelve la ruta absoluta a un recurso, ya sea ejecutando como .exe o en desarrollo"""
    if os.path.isabs(relative_path):
        return relative_path
    if hasattr(sys, "_MEIPASS"):
        # Ejecutable generado por PyInstaller
        base_path = sys._MEIPASS
    else:
        base_path = os.path.abspath(".")
    return os.path.join(base_path, relative_path)


def load_settings(path_or_obj: Optional[Any] = None) -> Settings:
    """Carga el YAML (o un dict ya cargado) y lo valida como Settings inmutable.

    Lanza pydantic.ValidationError si la configuración no es válida.
    """
    if isinstance(path_or_obj, dict):
        raw = path_or_obj
    else:
        path = path_or_obj or os.getenv("LABGW_CONFIG") or DEFAULT_CONFIG
        with open(resource_path(str(path)), "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    return Settings.model_validate(raw)
