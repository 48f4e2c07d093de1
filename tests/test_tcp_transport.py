import asyncio
import socket

import pytest

from labgw.commons.control import CR, FS, VT
from labgw.commons.types import ClientCfg, ListenerCfg, Settings
from labgw.helpers.tcp_transport import MllpSender, TcpClient, TcpServer, read_mllp_messages
from labgw.services.sink import CollectingSink

HL7 = (
    "MSH|^~\\&|Icon|ND|LIS|LIS|20250817142000||ORU^R01|A|P|2.5\r"
    "PID|1||777||ROJAS^JORGE\r"
    "OBR|1|A|||||20250817141900|\r"
    "OBX|1|NM|HCT^HCT||39.5|%|35-51|N||F|||20250817141900\r"
)

MLLP_TWO = (
    bytes([VT]) + HL7.encode() + bytes([FS, CR])
    + bytes([VT]) + HL7.replace("|A|P|", "|B|P|").encode() + bytes([FS, CR])
)


class DummyReader:
    """Emula StreamReader.read entregando bloques de tamaño arbitrario."""

    def __init__(self, data: bytes, size: int):
        self._chunks = [data[i : i + size] for i in range(0, len(data), size)]

    async def read(self, n):
        if not self._chunks:
            return b""
        return self._chunks.pop(0)


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [1, 5, 4096])
async def test_mllp_two_messages_reader(size):
    msgs = [m async for m in read_mllp_messages(DummyReader(MLLP_TWO, size))]
    assert len(msgs) == 2
    assert msgs[0] == HL7
    assert msgs[1].startswith("MSH|")
    assert "|B|P|" in msgs[1]


@pytest.mark.asyncio
async def test_server_acks_and_forwards_over_loopback():
    sink = CollectingSink()
    lst = ListenerCfg(name="loop", protocol="hl7", host="127.0.0.1", port=0)
    server = TcpServer(lst, Settings(), sink)
    await server.open()
    port = server.sockets[0].getsockname()[1]
    try:
        ack = await MllpSender("127.0.0.1", port, timeout=5).send(HL7)
        assert ack is not None
        assert ack.split("\r")[1] == "MSA|AA|A"
        assert ack.startswith("MSH|^~\\&|LIS|LIS|Icon|ND|")

        for _ in range(100):
            if sink.records:
                break
            await asyncio.sleep(0.02)
        assert [r.patient_id for r in sink.records] == ["777"]
        assert sink.records[0].value == "39.5"
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_auto_listener_answers_enq_over_loopback():
    lst = ListenerCfg(name="mix", protocol="auto", host="127.0.0.1", port=0)
    server = TcpServer(lst, Settings(), CollectingSink())
    await server.open()
    port = server.sockets[0].getsockname()[1]
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"\x05")
        await writer.drain()
        reply = await asyncio.wait_for(reader.read(1), timeout=5)
        assert reply == b"\x06"
        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()


# ----------------- Modo cliente -----------------
FAST = Settings(client=ClientCfg(retry_sec=0.05, reconnect_sec=0.05))


async def _stop_client(client: TcpClient, task: asyncio.Task):
    await client.stop()
    await asyncio.wait_for(task, timeout=5)


@pytest.mark.asyncio
async def test_client_reconnects_after_link_closed():
    connections = 0
    acks = []
    done = asyncio.Event()

    async def instrument(reader, writer):
        nonlocal connections
        connections += 1
        # La primera conexión se corta sin datos; en la segunda se envía un resultado
        if connections == 2:
            writer.write(bytes([VT]) + HL7.encode() + bytes([FS, CR]))
            await writer.drain()
            async for msg in read_mllp_messages(reader):
                acks.append(msg)
                break
            done.set()
        writer.close()

    server = await asyncio.start_server(instrument, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    sink = CollectingSink()
    lst = ListenerCfg(name="cli", protocol="hl7", mode="client", host="127.0.0.1", port=port)
    client = TcpClient(lst, FAST, sink)
    task = asyncio.create_task(client.start())
    try:
        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        await _stop_client(client, task)
        server.close()
        await server.wait_closed()

    assert connections >= 2
    assert acks[0].split("\r")[1] == "MSA|AA|A"
    assert [r.patient_id for r in sink.records] == ["777"]


@pytest.mark.asyncio
async def test_client_retries_until_instrument_listens():
    # Puerto libre sin nadie escuchando: los primeros intentos fallan
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]

    connected = asyncio.Event()

    async def instrument(reader, writer):
        connected.set()
        writer.close()

    lst = ListenerCfg(name="cli", mode="client", host="127.0.0.1", port=port)
    client = TcpClient(lst, FAST, CollectingSink())
    task = asyncio.create_task(client.start())
    server = None
    try:
        await asyncio.sleep(0.2)
        assert not task.done()
        server = await asyncio.start_server(instrument, "127.0.0.1", port)
        await asyncio.wait_for(connected.wait(), timeout=5)
    finally:
        await _stop_client(client, task)
        if server is not None:
            server.close()
            await server.wait_closed()
