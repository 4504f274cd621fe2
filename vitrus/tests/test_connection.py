import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from vitrus.errors import AuthenticationError, ConnectionError, ConnectionLost, TransportNotReady
from vitrus.models import GenericFrame, RegisterCommandFrame
from vitrus.network.connection import ConnectionManager, classify_error
from vitrus.network.correlator import RequestCorrelator
from vitrus.network.registry import CommandRegistry
from vitrus.network.router import MessageRouter
from vitrus.network.session_state import AGENT, ActorIdentity, ConnectionPhase


def _manager(settings, factory, **hooks):
    async def announce(entry):
        return None

    correlator = RequestCorrelator()
    registry = CommandRegistry(announce=announce, is_live=lambda _actor: False)

    async def send(frame):
        await manager.send(frame)

    router = MessageRouter(correlator=correlator, registry=registry, send=send, settings=settings)
    manager = ConnectionManager(settings=settings, transport_factory=factory, router=router, **hooks)
    return manager


@pytest.mark.asyncio
async def test_connect_as_actor_sends_handshake_with_metadata(settings, transports):
    manager = _manager(settings, transports, metadata_for=lambda name: {"role": name})

    await manager.connect(ActorIdentity("arm"))

    transport = transports.current
    assert manager.phase is ConnectionPhase.READY
    assert manager.tracker.client_id == "client-arm"
    assert manager.tracker.channel == "channel-1"
    assert transport.sent[0] == {
        "type": "HANDSHAKE",
        "apiKey": "test-key",
        "worldId": "world-1",
        "actorName": "arm",
        "metadata": {"role": "arm"},
    }
    query = parse_qs(urlsplit(transport.url).query)
    assert query == {"apiKey": ["test-key"], "worldId": ["world-1"], "actorName": ["arm"]}
    await manager.close()


@pytest.mark.asyncio
async def test_agent_handshake_has_no_actor_fields(settings, transports):
    manager = _manager(settings, transports)

    await manager.connect(AGENT)

    handshake = transports.current.sent[0]
    assert "actorName" not in handshake
    assert "metadata" not in handshake
    assert "actorName" not in parse_qs(urlsplit(transports.current.url).query)
    await manager.close()


@pytest.mark.asyncio
async def test_concurrent_connects_share_one_attempt(settings, transports):
    manager = _manager(settings, transports)

    await asyncio.gather(*(manager.connect(AGENT) for _ in range(5)))

    assert len(transports.created) == 1
    assert len(transports.current.sent_of("HANDSHAKE")) == 1
    await manager.close()


@pytest.mark.asyncio
async def test_rejected_handshake_raises_authentication_error(settings, helpers):
    def reject(message):
        if message.get("type") == "HANDSHAKE":
            return [{"type": "HANDSHAKE_RESPONSE", "success": False, "error_code": "invalid_api_key"}]
        return None

    factory = helpers.TransportRecorder(responder=reject)
    manager = _manager(settings, factory)

    with pytest.raises(AuthenticationError) as excinfo:
        await manager.connect(AGENT)

    assert excinfo.value.error_code == "invalid_api_key"
    assert "Invalid or expired API key" in str(excinfo.value)
    assert manager.phase is ConnectionPhase.FAILED
    assert not factory.current.is_open
    assert manager.last_error_type() == "auth"


@pytest.mark.asyncio
async def test_handshake_timeout_is_a_connection_error(settings, helpers):
    factory = helpers.TransportRecorder(responder=None)
    manager = _manager(settings.model_copy(update={"handshake_timeout_seconds": 0.05}), factory)

    with pytest.raises(ConnectionError) as excinfo:
        await manager.connect(AGENT)

    assert excinfo.value.stage == "authenticating"
    assert manager.phase is ConnectionPhase.FAILED
    assert manager.router.listener_count("HANDSHAKE_RESPONSE") == 0


@pytest.mark.asyncio
async def test_close_during_authentication_fails_connect(settings, helpers):
    factory = helpers.TransportRecorder(responder=None)
    manager = _manager(settings, factory)

    attempt = asyncio.create_task(manager.connect(AGENT))
    await helpers.wait_until(lambda: factory.created and factory.current.sent)
    factory.current.drop()

    with pytest.raises(ConnectionError) as excinfo:
        await attempt
    assert excinfo.value.before_authentication is False
    assert manager.phase is ConnectionPhase.FAILED


@pytest.mark.asyncio
async def test_transport_open_failure_is_reported_with_stage(settings):
    class _Refusing:
        def __init__(self, settings, url):
            self.is_open = False

        async def connect(self):
            raise OSError("Connection refused")

        async def close(self):
            return None

    manager = _manager(settings, _Refusing)

    with pytest.raises(ConnectionError) as excinfo:
        await manager.connect(AGENT)

    assert excinfo.value.stage == "connecting"
    assert excinfo.value.error_type == "network"
    assert excinfo.value.before_authentication


@pytest.mark.asyncio
async def test_loss_after_ready_reports_connection_lost(settings, transports, helpers):
    lost = []
    manager = _manager(settings, transports, on_lost=lost.append)
    await manager.connect(AGENT)

    transports.current.drop()
    await helpers.wait_until(lambda: bool(lost))

    assert isinstance(lost[0], ConnectionLost)
    assert manager.phase is ConnectionPhase.DISCONNECTED
    assert manager.tracker.client_id is None
    with pytest.raises(TransportNotReady):
        await manager.send(RegisterCommandFrame(actor_name="arm", command_name="move"))

    await manager.connect(AGENT)
    assert manager.ready
    assert len(transports.created) == 2
    await manager.close()


@pytest.mark.asyncio
async def test_switching_identity_reconnects(settings, transports):
    lost = []
    manager = _manager(settings, transports, on_lost=lost.append)
    await manager.connect(ActorIdentity("arm"))

    await manager.connect(ActorIdentity("arm"))
    assert len(transports.created) == 1

    await manager.connect(ActorIdentity("camera"))

    assert len(transports.created) == 2
    assert not transports.created[0].is_open
    assert manager.tracker.authenticated_as("camera")
    assert isinstance(lost[0], ConnectionLost)
    await manager.close()


@pytest.mark.asyncio
async def test_ready_hooks_run_in_order(settings, helpers):
    calls = []

    def with_actor_info(message):
        if message.get("type") == "HANDSHAKE":
            return [
                {
                    "type": "HANDSHAKE_RESPONSE",
                    "success": True,
                    "clientId": "c1",
                    "actorInfo": {"metadata": {"restored": True}, "registeredCommands": []},
                }
            ]
        return None

    async def on_ready(identity):
        calls.append(("ready", identity.name))

    manager = _manager(
        settings,
        helpers.TransportRecorder(responder=with_actor_info),
        on_actor_info=lambda name, info: calls.append(("info", name, info.metadata)),
        on_ready=on_ready,
    )

    await manager.connect(ActorIdentity("arm"))

    assert calls == [("info", "arm", {"restored": True}), ("ready", "arm")]
    await manager.close()


def test_classify_error():
    assert classify_error(OSError("Connection refused")) == "network"
    assert classify_error(RuntimeError("invalid status 403 forbidden")) == "auth"
    assert classify_error(RuntimeError("handshake mismatch")) == "protocol"
    assert classify_error(RuntimeError("???")) == "unknown"


@pytest.mark.asyncio
async def test_close_right_after_handshake_success_fails_connect(settings, helpers):
    def accept_then_close(message):
        if message.get("type") != "HANDSHAKE":
            return None
        if len(factory.created) > 1:
            return helpers.accept_handshake(message)
        transport = factory.current
        transport.push({"type": "HANDSHAKE_RESPONSE", "success": True, "clientId": "c1"})
        transport.drop()
        return None

    factory = helpers.TransportRecorder(responder=accept_then_close)
    manager = _manager(settings, factory)

    with pytest.raises(ConnectionError) as excinfo:
        await manager.connect(AGENT)

    assert excinfo.value.stage == "authenticating"
    assert manager.phase is ConnectionPhase.FAILED
    assert not manager.ready

    await manager.connect(AGENT)
    assert manager.ready
    assert len(factory.created) == 2
    await manager.close()


@pytest.mark.asyncio
async def test_dead_transport_under_ready_session_reconnects(settings, transports):
    lost = []
    manager = _manager(settings, transports, on_lost=lost.append)
    await manager.connect(AGENT)

    transports.current.sever()
    assert manager.phase is ConnectionPhase.READY
    assert not manager.ready

    await manager.connect(AGENT)

    assert manager.ready
    assert len(transports.created) == 2
    assert isinstance(lost[0], ConnectionLost)
    await manager.close()


@pytest.mark.asyncio
async def test_transient_receive_error_keeps_session_usable(settings, transports, helpers):
    lost = []
    manager = _manager(settings, transports, on_lost=lost.append)
    await manager.connect(AGENT)
    transport = transports.current
    original_receive = transport.receive
    calls = {"count": 0}

    async def glitch_once():
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("decoder glitch")
        return await original_receive()

    transport.receive = glitch_once
    seen = []
    manager.router.subscribe("PONG", seen.append)

    # Wake the pending receive so the next read goes through glitch_once.
    transport.push({"type": "PING"})
    await helpers.wait_until(lambda: calls["count"] >= 2)
    transport.push({"type": "PONG"})
    await helpers.wait_until(lambda: bool(seen))

    assert manager.last_error_type() == "unknown"
    assert manager.ready
    assert lost == []
    await manager.close()


@pytest.mark.asyncio
async def test_persistent_receive_error_drops_session(settings, transports, helpers):
    lost = []
    manager = _manager(settings, transports, on_lost=lost.append)
    await manager.connect(AGENT)
    transport = transports.current

    async def always_broken():
        raise RuntimeError("decoder glitch")

    transport.receive = always_broken
    transport.push({"type": "PING"})
    await helpers.wait_until(lambda: bool(lost), timeout=2.0)

    assert isinstance(lost[0], ConnectionLost)
    assert manager.phase is ConnectionPhase.DISCONNECTED
    assert not transport.is_open

    await manager.connect(AGENT)
    assert manager.ready
    assert len(transports.created) == 2
    await manager.close()


@pytest.mark.asyncio
async def test_unexpected_handshake_frame_is_a_protocol_error(settings, transports):
    manager = _manager(settings, transports)
    subscription = manager.router.subscribe_once("HANDSHAKE_RESPONSE")
    subscription.future.set_result(GenericFrame(type="HANDSHAKE_RESPONSE"))

    with pytest.raises(ConnectionError) as excinfo:
        await manager._await_handshake(subscription)

    assert excinfo.value.error_type == "protocol"
    assert excinfo.value.stage == "authenticating"
