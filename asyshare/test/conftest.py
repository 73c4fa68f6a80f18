import socket
import asyncio
import contextlib

import h11
import pytest

from asyshare.lifecycle import ServerLifecycleManager


class HTTPResult:
    def __init__(self, status_code:int, headers:dict, body:bytes):
        self.status_code = status_code
        self.headers = headers
        self.body = body

    @property
    def text(self):
        return self.body.decode('utf-8')

    def __repr__(self):
        return 'HTTPResult(%s, %r)' % (self.status_code, self.body[:200])


async def http_request(port:int, method:str, target:str, headers = None, body:bytes = b'', send_body:bool = True, host:str = '127.0.0.1'):
    """
    One request over a fresh connection. With `send_body=False` only the
    request head goes out, the declared Content-Length is left unsatisfied.
    """
    reader, writer = await asyncio.open_connection(host, port)
    conn = h11.Connection(h11.CLIENT)
    request_headers = [('Host', '%s:%s' % (host, port))]
    if headers is not None:
        request_headers.extend(headers)
    if not any(name.lower() in ('content-length', 'transfer-encoding') for name, _ in request_headers):
        request_headers.append(('Content-Length', str(len(body))))

    data = conn.send(h11.Request(method=method, target=target, headers=request_headers))
    if send_body is True:
        if body:
            data += conn.send(h11.Data(data=body))
        data += conn.send(h11.EndOfMessage())
    writer.write(data)
    await writer.drain()

    response = None
    chunks = []
    try:
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA:
                conn.receive_data(await reader.read(65536))
                continue
            if type(event) is h11.Response:
                response = event
            elif type(event) is h11.Data:
                chunks.append(event.data)
            elif type(event) in (h11.EndOfMessage, h11.ConnectionClosed):
                break
    finally:
        writer.close()

    headers = {}
    for name, value in response.headers:
        headers[name.decode('ascii').lower()] = value.decode('latin-1')
    return HTTPResult(response.status_code, headers, b''.join(chunks))


def multipart_body(files, boundary:str = 'asyshareTestBoundary', fields = None):
    """`files` is a list of (field, filename, content) tuples."""
    parts = []
    for name, value in (fields or []):
        parts.append(
            ('--%s\r\nContent-Disposition: form-data; name="%s"\r\n\r\n' % (boundary, name)).encode('utf-8')
            + value + b'\r\n'
        )
    for field, filename, content in files:
        parts.append(
            ('--%s\r\nContent-Disposition: form-data; name="%s"; filename="%s"\r\n'
             'Content-Type: application/octet-stream\r\n\r\n' % (boundary, field, filename)).encode('utf-8')
            + content + b'\r\n'
        )
    body = b''.join(parts) + ('--%s--\r\n' % boundary).encode('ascii')
    content_type = 'multipart/form-data; boundary=%s' % boundary
    return content_type, body


def get_free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port():
    return get_free_port()


@pytest.fixture
def site_root(tmp_path):
    root = tmp_path / 'site'
    root.mkdir()
    (root / 'docs').mkdir()
    (root / 'docs' / 'readme.txt').write_text('read me')
    (root / 'hello.txt').write_text('hello world')
    (root / 'withindex').mkdir()
    (root / 'withindex' / 'index.html').write_text('<h1>index</h1>')
    return root


@pytest.fixture
def lookup_root(tmp_path):
    lookup = tmp_path / 'api'
    (lookup / 'txt').mkdir(parents=True)
    (lookup / 'json').mkdir()
    (lookup / 'txt' / '2.txt').write_text('artifact two')
    (lookup / 'json' / '1.json').write_text('{"id": 1}')
    return lookup


@contextlib.asynccontextmanager
async def running_server(root, port:int, **manager_kwargs):
    manager = ServerLifecycleManager(**manager_kwargs)
    result = await manager.start_server(str(root), '127.0.0.1', port)
    assert result.success is True, result.message
    try:
        yield manager
    finally:
        if await manager.get_run_state() is True:
            await manager.stop_server()
