import asyncio

import pytest

from labgw.commons.control import CR, ENQ, EOT, ETX, FS, STX, VT
from labgw.commons.types import ListenerCfg, Settings
from labgw.services.gateway_service import CaptureInbox, GatewayService, replay_capture
from labgw.services.sink import CollectingSink

HL7 = b"MSH|^~\\&|A|B|C|D|20260213||ORU^R01|1|P|2.3\rPID|1||P1\rOBX|1|NM|GLU^Glucose||5.6|mmol/L\r"
CAPTURE = bytes([VT]) + HL7 + bytes([FS, CR]) + bytes([ENQ, STX]) + b"P|1|P2\rR|1|NA|140\r" + bytes([ETX, EOT])


@pytest.mark.asyncio
async def test_replay_capture_collects_records():
    sink = CollectingSink()
    session = await replay_capture(CAPTURE, ListenerCfg(name="r", protocol="auto"), Settings(), sink)
    assert [(r.protocol, r.patient_id) for r in sink.records] == [("HL7", "P1"), ("ASTM", "P2")]
    assert session.stats.messages == 1
    assert session.stats.frames == 1


@pytest.mark.asyncio
async def test_inbox_backlog_processed_and_archived(tmp_path):
    (tmp_path / "a.raw").write_bytes(CAPTURE)
    (tmp_path / "b.raw").write_bytes(CAPTURE)
    (tmp_path / "ignore.txt").write_bytes(CAPTURE)
    sink = CollectingSink()
    lst = ListenerCfg(name="inbox", transport="file", inbox=str(tmp_path), glob="*.raw")
    inbox = CaptureInbox(lst, Settings(), sink)
    await inbox.process_backlog()

    assert len(sink.records) == 4
    assert sorted(p.name for p in (tmp_path / "processed").iterdir()) == ["a.raw", "b.raw"]
    assert (tmp_path / "ignore.txt").exists()


def test_service_builds_runner_per_transport(tmp_path):
    listeners = [
        ListenerCfg(name="srv"),
        ListenerCfg(name="cli", mode="client", host="10.0.0.1"),
        ListenerCfg(name="com", transport="serial", device="/dev/ttyUSB0"),
        ListenerCfg(name="dir", transport="file", inbox=str(tmp_path)),
    ]
    svc = GatewayService(Settings(listeners=listeners), sink=CollectingSink())
    kinds = [type(svc.build(lst)).__name__ for lst in svc.select()]
    assert kinds == ["TcpServer", "TcpClient", "SerialPort", "CaptureInbox"]
    assert [lst.name for lst in svc.select(["com"])] == ["com"]
    with pytest.raises(ValueError):
        svc.select(["missing"])


class ClosingSink(CollectingSink):
    closed = False

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_run_stops_every_runner_on_cancel(tmp_path):
    listeners = [
        ListenerCfg(name="srv", host="127.0.0.1", port=0),
        ListenerCfg(name="cli", mode="client", host="127.0.0.1", port=1),
        ListenerCfg(name="dir", transport="file", inbox=str(tmp_path)),
    ]
    sink = ClosingSink()
    svc = GatewayService(Settings(listeners=listeners), sink=sink)
    task = asyncio.create_task(svc.run())
    await asyncio.sleep(0.3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    srv, cli, inbox = svc.runners
    assert srv.sockets == ()
    assert cli._stop.is_set()
    assert inbox._stop.is_set()
    assert sink.closed
