from pathlib import Path

import pytest
from pydantic import ValidationError

from labgw.commons.config import load_settings
from labgw.commons.types import ListenerCfg, Settings, SinkCfg

ROOT = Path(__file__).resolve().parent.parent


def cfg_min():
    return {
        "app": {"name": "gw", "debug": True},
        "sink": {"endpoint": "http://lis.local/api/results", "timeout_sec": 10},
        "listeners": [
            {"name": "hl7", "protocol": "hl7", "port": 7007},
            {"name": "rs232", "protocol": "astm", "transport": "serial", "device": "/dev/ttyS0", "baudrate": 9600},
        ],
    }


def test_defaults():
    s = Settings()
    assert s.app.debug is False
    assert s.sink.endpoint == ""
    assert s.sink.timeout_sec == 10.0
    assert s.client.retry_sec == 5.0
    assert s.listeners == ()


def test_load_from_dict():
    s = load_settings(cfg_min())
    assert s.app.debug is True
    assert [lst.name for lst in s.listeners] == ["hl7", "rs232"]
    assert s.listener("rs232").address == "/dev/ttyS0@9600"
    assert s.listener("hl7").address == "0.0.0.0:7007"
    assert s.listener("nope") is None


def test_load_shipped_yaml():
    s = load_settings(str(ROOT / "labgw" / "configs" / "settings.yaml"))
    assert s.listener("hl7-tcp").protocol == "hl7"
    assert s.listener("mixed-tcp").protocol == "auto"


def test_load_yaml_file(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text(
        "app:\n  debug: true\nlisteners:\n  - name: lab\n    protocol: astm\n    port: 5000\n",
        encoding="utf-8",
    )
    s = load_settings(str(p))
    assert s.listener("lab").port == 5000


def test_settings_are_immutable():
    s = load_settings(cfg_min())
    with pytest.raises(ValidationError):
        s.app.debug = False


def test_unknown_keys_rejected():
    with pytest.raises(ValidationError):
        Settings.model_validate({"app": {"nombre": "x"}})


@pytest.mark.parametrize(
    "listener",
    [
        {"name": "x", "protocol": "dicom"},
        {"name": "x", "transport": "serial"},
        {"name": "x", "transport": "file"},
        {"name": "x", "port": 70000},
        {"name": "x", "mode": "peer"},
    ],
)
def test_invalid_listener(listener):
    with pytest.raises(ValidationError):
        ListenerCfg(**listener)


def test_invalid_sink():
    with pytest.raises(ValidationError):
        SinkCfg(endpoint="ftp://lis")
    with pytest.raises(ValidationError):
        SinkCfg(timeout_sec=0)
