"""Unit tests for the terminal WebSocket connection state machine."""
import asyncio
import json

import pytest
from prometheus_client import REGISTRY

from tailmux.api.modules.pty.connection import ConnectionState, TerminalConnection
from tailmux.api.modules.pty.service import SessionRegistry


def _frame(**kwargs):
    return json.dumps(kwargs)


def _create(mode='new', **kwargs):
    return _frame(type='create', mode=mode, **kwargs)


@pytest.fixture
def connection(transport, registry):
    return TerminalConnection(transport, registry, connection_id='conn-1')


# ── Create ──


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_sends_ready(self, connection, transport, registry):
        await connection.handle_frame(_create(cols=100, rows=30))
        assert connection.state is ConnectionState.ACTIVE
        assert transport.sent == [{'type': 'ready'}]
        assert connection.session_id in registry

    @pytest.mark.asyncio
    async def test_create_geometry(self, connection, process_factory):
        await connection.handle_frame(_create(cols=100, rows=30))
        assert (process_factory.last.cols, process_factory.last.rows) == (100, 30)

    @pytest.mark.asyncio
    async def test_create_defaults(self, connection, process_factory):
        await connection.handle_frame(_frame(type='create'))
        assert (process_factory.last.cols, process_factory.last.rows) == (80, 24)
        assert process_factory.last.command == ['bash']

    @pytest.mark.asyncio
    async def test_create_tmux_session_name_alias(self, connection, registry):
        await connection.handle_frame(_create('tmux', sessionName='work'))
        assert registry.get(connection.session_id).session_name == 'work'

    @pytest.mark.asyncio
    async def test_second_create_ignored(self, connection, transport, registry, process_factory):
        await connection.handle_frame(_create())
        first = connection.session_id
        await connection.handle_frame(_create())
        assert connection.session_id == first
        assert len(registry) == 1
        assert len(process_factory.processes) == 1
        assert transport.types() == ['ready']


class TestCreateFailure:

    @pytest.mark.asyncio
    async def test_capacity(self, config, fake_tmux, process_factory, make_transport):
        config.max_terminals = 1
        registry = SessionRegistry(config, tmux=fake_tmux, process_factory=process_factory)
        first = TerminalConnection(make_transport(), registry)
        await first.handle_frame(_create())

        transport = make_transport()
        second = TerminalConnection(transport, registry)
        await second.handle_frame(_create())

        assert second.state is ConnectionState.CLOSED
        assert transport.types() == ['error']
        assert 'Maximum number of terminals' in transport.sent[0]['message']
        assert transport.close_calls == [(1013, 'Max terminals reached')]
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_spawn_failure(self, connection, transport, process_factory, registry):
        process_factory.fail_spawn = True
        await connection.handle_frame(_create())
        assert transport.types() == ['error']
        assert transport.close_calls == [(1011, 'Failed to spawn')]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_tmux_missing(self, connection, transport, fake_tmux):
        fake_tmux.available = False
        await connection.handle_frame(_create('tmux', sessionName='work'))
        assert transport.sent == [{'type': 'error', 'message': 'tmux is not installed on the server.'}]
        assert transport.close_calls == [(1011, 'tmux unavailable')]


# ── Input / resize ──


class TestInputResize:

    @pytest.mark.asyncio
    async def test_input_before_create_is_noop(self, connection, transport, process_factory):
        await connection.handle_frame(_frame(type='input', data='ls\n'))
        await connection.handle_frame(_frame(type='resize', cols=10, rows=10))
        assert connection.state is ConnectionState.IDLE
        assert process_factory.processes == []
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_input_forwarded(self, connection, process_factory):
        await connection.handle_frame(_create())
        await connection.handle_frame(_frame(type='input', data='ls\n'))
        assert process_factory.last.writes == ['ls\n']

    @pytest.mark.asyncio
    async def test_resize_forwarded(self, connection, process_factory):
        await connection.handle_frame(_create())
        await connection.handle_frame(_frame(type='resize', cols=132, rows=43))
        assert process_factory.last.resizes == [(132, 43)]

    @pytest.mark.asyncio
    async def test_bytes_frame(self, connection, process_factory):
        await connection.handle_frame(_create())
        await connection.handle_frame(b'{"type": "input", "data": "pwd\\n"}')
        assert process_factory.last.writes == ['pwd\n']


class TestMalformedFrames:

    @pytest.mark.asyncio
    @pytest.mark.parametrize('raw', [
        'not json',
        '[]',
        '{"data": "no type"}',
        '{"type": "bogus"}',
        '{"type": "input"}',
        '{"type": "resize", "cols": 0, "rows": 10}',
        b'\xff\xfe',
    ])
    async def test_dropped_and_connection_stays_open(self, connection, transport, raw):
        before = REGISTRY.get_sample_value('tailmux_ws_frames_dropped_total') or 0.0
        await connection.handle_frame(_create())
        await connection.handle_frame(raw)
        assert connection.state is ConnectionState.ACTIVE
        assert not transport.closed
        assert REGISTRY.get_sample_value('tailmux_ws_frames_dropped_total') == before + 1


# ── Outbound events ──


class TestProcessEvents:

    @pytest.mark.asyncio
    async def test_output_frames(self, connection, transport, process_factory):
        await connection.handle_frame(_create())
        await process_factory.last.emit('one')
        await process_factory.last.emit('two')
        assert transport.sent[1:] == [
            {'type': 'output', 'data': 'one'},
            {'type': 'output', 'data': 'two'},
        ]

    @pytest.mark.asyncio
    async def test_exit_sends_one_exit_and_closes(self, connection, transport, process_factory, registry):
        await connection.handle_frame(_create())
        await process_factory.last.exit(7)
        assert transport.sent[-1] == {'type': 'exit', 'exitCode': 7}
        assert transport.close_calls == [(1000, '')]
        assert connection.state is ConnectionState.CLOSED
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_frames_after_close_ignored(self, connection, transport, process_factory):
        await connection.handle_frame(_create())
        await process_factory.last.exit(0)
        sent = list(transport.sent)
        await connection.handle_frame(_frame(type='input', data='ls\n'))
        await connection.handle_frame(_frame(type='ping'))
        assert transport.sent == sent
        assert process_factory.last.writes == []

    @pytest.mark.asyncio
    async def test_idle_expiry(self, config, fake_tmux, process_factory, transport):
        config.idle_timeout_ms = 50
        registry = SessionRegistry(config, tmux=fake_tmux, process_factory=process_factory)
        connection = TerminalConnection(transport, registry)
        await connection.handle_frame(_create())

        await asyncio.sleep(0.2)

        assert transport.sent[-1] == {'type': 'error', 'message': 'Session closed due to inactivity.'}
        assert transport.close_calls == [(1000, 'Idle timeout')]
        assert connection.state is ConnectionState.CLOSED
        assert len(registry) == 0


# ── Transport close ──


class TestConnectionLost:

    @pytest.mark.asyncio
    async def test_destroys_session_with_detach(self, connection, registry, fake_tmux, process_factory):
        await connection.handle_frame(_create('tmux', sessionName='work'))
        connection.connection_lost()
        assert len(registry) == 0
        assert process_factory.last.kill_count == 1
        assert fake_tmux.commands('detach-client') == [['detach-client', '-t', 'work']]

    @pytest.mark.asyncio
    async def test_idempotent(self, connection, registry, process_factory):
        await connection.handle_frame(_create())
        connection.connection_lost()
        connection.connection_lost()
        assert process_factory.last.kill_count == 1
        assert connection.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_before_create(self, connection, registry):
        connection.connection_lost()
        assert connection.state is ConnectionState.CLOSED
        assert len(registry) == 0


# ── Heartbeat hooks ──


class TestHeartbeatHooks:

    @pytest.mark.asyncio
    async def test_heartbeat_clears_flag_and_pings(self, connection, transport):
        await connection.send_heartbeat()
        assert connection.is_alive is False
        assert transport.sent == [{'type': 'ping'}]

    @pytest.mark.asyncio
    async def test_pong_sets_flag(self, connection):
        await connection.send_heartbeat()
        await connection.handle_frame(_frame(type='pong'))
        assert connection.is_alive is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize('frame', [
        {'type': 'input', 'data': 'x'},
        {'type': 'resize', 'cols': 90, 'rows': 30},
        {'type': 'ping'},
    ])
    async def test_any_frame_sets_flag(self, connection, frame):
        await connection.send_heartbeat()
        await connection.handle_frame(_frame(**frame))
        assert connection.is_alive is True

    @pytest.mark.asyncio
    async def test_malformed_frame_does_not_set_flag(self, connection):
        await connection.send_heartbeat()
        await connection.handle_frame('{not json')
        assert connection.is_alive is False

    @pytest.mark.asyncio
    async def test_client_ping_answered(self, connection, transport):
        await connection.handle_frame(_frame(type='ping'))
        assert transport.sent == [{'type': 'pong'}]

    @pytest.mark.asyncio
    async def test_terminate(self, connection, transport, registry):
        await connection.handle_frame(_create())
        await connection.terminate()
        assert len(registry) == 0
        assert transport.close_calls == [(1001, 'Heartbeat timeout')]
        assert connection.state is ConnectionState.CLOSED


class TestTransitions:

    def test_illegal_transition_rejected(self, connection):
        connection.connection_lost()
        with pytest.raises(RuntimeError, match='closed -> active'):
            connection._transition(ConnectionState.ACTIVE)
