import socket
import asyncio

import pytest

from asyshare.common.target import ServerState
from asyshare.lifecycle import ServerLifecycleManager, ControlResult
from asyshare.server.httpserver import HTTPServer
from asyshare.test.conftest import http_request


def test_control_result_dict():
    assert ControlResult(True, 'ok').to_dict() == {'success': True, 'message': 'ok'}


@pytest.mark.asyncio
@pytest.mark.parametrize('port', ['0', '65536', 'abc', '', '-5'])
async def test_invalid_port_keeps_idle(tmp_path, port):
    manager = ServerLifecycleManager()
    result = await manager.start_server(str(tmp_path), '127.0.0.1', port)
    assert result.success is False
    assert 'port' in result.message.lower()
    assert await manager.get_state() is ServerState.IDLE
    assert await manager.get_run_state() is False


@pytest.mark.asyncio
async def test_start_twice_stop_restart(site_root, free_port):
    manager = ServerLifecycleManager()
    result = await manager.start_server(str(site_root), '127.0.0.1', str(free_port))
    assert result.success is True
    assert 'http://127.0.0.1:%d/' % free_port in result.message

    second = await manager.start_server(str(site_root), '127.0.0.1', str(free_port))
    assert second.success is False
    assert second.message == 'Server is already running!'
    assert await manager.get_run_state() is True
    res = await http_request(free_port, 'GET', '/hello.txt')
    assert res.status_code == 200

    stopped = await manager.stop_server()
    assert stopped.success is True
    assert await manager.get_run_state() is False
    with pytest.raises(OSError):
        await http_request(free_port, 'GET', '/hello.txt')

    third = await manager.start_server(str(site_root), '127.0.0.1', str(free_port))
    assert third.success is True
    res = await http_request(free_port, 'GET', '/hello.txt')
    assert res.body == b'hello world'
    assert (await manager.stop_server()).success is True


@pytest.mark.asyncio
async def test_already_running_is_checked_first(site_root, free_port):
    manager = ServerLifecycleManager()
    assert (await manager.start_server(str(site_root), '127.0.0.1', free_port)).success is True
    try:
        result = await manager.start_server('', '', '')
        assert result.message == 'Server is already running!'
    finally:
        await manager.stop_server()


@pytest.mark.asyncio
async def test_stop_when_idle():
    manager = ServerLifecycleManager()
    result = await manager.stop_server()
    assert result.success is False
    assert result.message == 'Server is not running!'


@pytest.mark.asyncio
async def test_concurrent_starts(site_root, free_port):
    manager = ServerLifecycleManager()
    results = await asyncio.gather(*[
        manager.start_server(str(site_root), '127.0.0.1', free_port) for _ in range(5)
    ])
    try:
        assert sum(1 for r in results if r.success is True) == 1
    finally:
        await manager.stop_server()


@pytest.mark.asyncio
async def test_bind_error(site_root):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        s.listen(1)
        port = s.getsockname()[1]

        manager = ServerLifecycleManager()
        result = await manager.start_server(str(site_root), '127.0.0.1', port)
        assert result.success is False
        assert 'Port %d' % port in result.message
        assert 'Please try another port' in result.message
        assert await manager.get_run_state() is False


@pytest.mark.asyncio
async def test_startup_and_stop_logs(site_root, free_port):
    manager = ServerLifecycleManager(lookup_directory='./lookups')
    await manager.start_server(str(site_root), '127.0.0.1', free_port)
    await manager.stop_server()
    logs = await manager.get_logs()
    assert logs[0] == 'Starting server...'
    assert 'Static directory: %s' % site_root in logs
    assert 'URL: http://127.0.0.1:%d/' % free_port in logs
    assert any('/lookup/get/2' in msg and './lookups/txt/2.txt' in msg for msg in logs)
    assert logs[-2] == 'Server started successfully!'
    assert logs[-1] == 'Server stopped'

    await manager.clear_logs()
    assert await manager.get_logs() == []


@pytest.mark.asyncio
async def test_accept_loop_failure_resets_state(site_root, free_port, monkeypatch):
    async def broken_serve(self):
        raise OSError('accept failed')

    monkeypatch.setattr(HTTPServer, 'serve', broken_serve)
    manager = ServerLifecycleManager()
    result = await manager.start_server(str(site_root), '127.0.0.1', free_port)
    assert result.success is True

    for _ in range(100):
        if await manager.get_run_state() is False:
            break
        await asyncio.sleep(0.01)
    assert await manager.get_run_state() is False
    assert 'Server error: accept failed' in await manager.get_logs()
    # the port was released, a new server can take it
    monkeypatch.undo()
    assert (await manager.start_server(str(site_root), '127.0.0.1', free_port)).success is True
    await manager.stop_server()


@pytest.mark.asyncio
async def test_accept_loop_return_resets_state(site_root, free_port, monkeypatch):
    async def quiet_serve(self):
        return

    monkeypatch.setattr(HTTPServer, 'serve', quiet_serve)
    manager = ServerLifecycleManager()
    result = await manager.start_server(str(site_root), '127.0.0.1', free_port)
    assert result.success is True

    for _ in range(100):
        if await manager.get_run_state() is False:
            break
        await asyncio.sleep(0.01)
    assert await manager.get_state() is ServerState.IDLE
    assert (await manager.get_logs())[-1] == 'Server error: accept loop ended unexpectedly'
    assert (await manager.stop_server()).success is False
    monkeypatch.undo()
    assert (await manager.start_server(str(site_root), '127.0.0.1', free_port)).success is True
    await manager.stop_server()


@pytest.mark.asyncio
async def test_save_logs(tmp_path):
    log_dir = tmp_path / 'log'
    manager = ServerLifecycleManager(log_directory=str(log_dir))
    result = await manager.set_save_logs(True)
    assert result.success is True
    await manager.set_save_logs(False)
    content = (log_dir / 'log.txt').read_text(encoding='utf-8')
    assert content.rstrip().endswith('] Log saving enabled')
    assert 'Log saving disabled' not in content
    assert (await manager.get_logs())[-1] == 'Log saving disabled'


@pytest.mark.asyncio
async def test_local_ips():
    manager = ServerLifecycleManager()
    ips = await manager.get_local_ips()
    assert ips[0] == {'ip': '127.0.0.1', 'name': 'local'}
    assert ips[1] == {'ip': '0.0.0.0', 'name': 'all interfaces'}
    assert len(set(x['ip'] for x in ips)) == len(ips)
