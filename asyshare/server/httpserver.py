import os
import stat
import asyncio
import datetime
import email.utils
import logging
import urllib.parse
from itertools import count

import h11

from asyshare._version import __version__
from asyshare.server.connection import ClientConnection
from asyshare.server.listener import Listener
from asyshare.errors import PayloadTooLarge, NotFoundError

logger = logging.getLogger('asyshare.http')

SERVER_IDENT = " ".join(
    ["asyshare/%s" % __version__, h11.PRODUCT_ID]
).encode("ascii")


def format_date_time(dt=None):
    """Generate a RFC 7231 / RFC 9110 IMF-fixdate string"""
    if dt is None:
        dt = datetime.datetime.now(datetime.timezone.utc)
    return email.utils.format_datetime(dt, usegmt=True)


def open_regular_file(file_path:str):
    """
    Opens `file_path` for reading without blocking on fifos.
    Anything but a regular file raises NotFoundError.
    """
    fd = os.open(file_path, os.O_RDONLY | getattr(os, "O_NONBLOCK", 0))
    try:
        if not stat.S_ISREG(os.fstat(fd).st_mode):
            raise NotFoundError()
        return os.fdopen(fd, "rb")
    except BaseException:
        os.close(fd)
        raise


class HTTPConnectionWrapper:
    _next_id = count()

    def __init__(self, stream:ClientConnection):
        self.stream = stream
        self.conn = h11.Connection(h11.SERVER)
        # A unique id for this connection, to include in debugging output
        self.client_id = next(HTTPConnectionWrapper._next_id)

    async def send(self, event):
        # ConnectionClosed is never sent, the connection is closed by the server loop
        assert type(event) is not h11.ConnectionClosed
        data = self.conn.send(event)
        try:
            await self.stream.write(data)
        except BaseException:
            self.conn.send_failed()
            raise

    async def _read_from_peer(self):
        if self.conn.they_are_waiting_for_100_continue:
            logger.debug("[%s] Sending 100 Continue" % self.client_id)
            go_ahead = h11.InformationalResponse(
                status_code=100, headers=basic_headers()
            )
            await self.send(go_ahead)
        try:
            data = await self.stream.read_one()
        except Exception as exc:
            logger.debug('[%s] Error reading from peer: %s' % (self.client_id, exc))
            # They've stopped listening. Not much we can do about it here.
            data = b""
        self.conn.receive_data(data)

    async def next_event(self):
        while True:
            event = self.conn.next_event()
            if event is h11.NEED_DATA:
                await self._read_from_peer()
                continue
            return event

    async def discard_body(self):
        while self.conn.their_state is h11.SEND_BODY:
            event = await self.next_event()
            if type(event) is h11.EndOfMessage or type(event) is h11.ConnectionClosed:
                break

    async def shutdown_and_clean_up(self):
        try:
            await self.stream.close()
        except Exception:
            return


def basic_headers():
    # HTTP requires these headers in all responses
    return [
        ("Date", format_date_time().encode("ascii")),
        ("Server", SERVER_IDENT),
        ("Cache-Control", b"no-cache"),
    ]


class HTTPServerHandler:
    """
    Base request handler. A request with method X is dispatched to `do_X`,
    methods without a handler are answered with 405.
    """
    def __init__(self):
        self._wrapper:HTTPConnectionWrapper = None
        self.request:h11.Request = None

    def basic_headers(self):
        return basic_headers()

    async def _process_request(self, wrapper:HTTPConnectionWrapper, request:h11.Request):
        self._wrapper = wrapper
        self.request = request
        method = request.method.decode("ascii")
        func = getattr(self, "do_%s" % method, None)
        if func is None:
            return await self.send_error(405, "Method Not Allowed", close=True)
        await func(request)

    @property
    def method(self):
        return self.request.method.decode("ascii")

    def get_header(self, name:str, default:str = None):
        name = name.lower().encode("ascii")
        for hname, value in self.request.headers:
            if hname.lower() == name:
                return value.decode("latin-1")
        return default

    def get_content_length(self):
        value = self.get_header("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    def split_target(self):
        """Returns the percent-decoded request path and the raw query string."""
        target = self.request.target.decode("ascii", errors="replace")
        url_parts = urllib.parse.urlsplit(target)
        path = urllib.parse.unquote(url_parts.path, errors="strict")
        if not path.startswith("/"):
            path = "/" + path
        return path, url_parts.query

    async def iter_body(self, limit:int = None):
        """Yields the request body in the chunks the peer sent it in."""
        received = 0
        while self._wrapper.conn.their_state is h11.SEND_BODY:
            event = await self._wrapper.next_event()
            if type(event) is h11.Data:
                received += len(event.data)
                if limit is not None and received > limit:
                    raise PayloadTooLarge()
                if event.data:
                    yield event.data
            elif type(event) is h11.EndOfMessage:
                return
            else:
                raise ConnectionError("Unexpected event while reading body: %s" % type(event).__name__)

    async def read_body(self, limit:int = None):
        body_parts = []
        async for chunk in self.iter_body(limit):
            body_parts.append(chunk)
        return b"".join(body_parts)

    async def send_response(self, status_code:int, body:bytes = b"", content_type:str = "text/plain; charset=utf-8", headers = None, close:bool = False):
        response_headers = self.basic_headers()
        if content_type is not None:
            response_headers.append(("Content-Type", content_type.encode("ascii")))
        response_headers.append(("Content-Length", str(len(body)).encode("ascii")))
        if headers is not None:
            response_headers.extend(headers)
        if close is True:
            response_headers.append(("Connection", b"close"))

        await self._wrapper.send(h11.Response(status_code=status_code, headers=response_headers))
        if body and self.method != "HEAD":
            await self._wrapper.send(h11.Data(data=body))
        await self._wrapper.send(h11.EndOfMessage())

    async def send_error(self, status_code:int, message:str, close:bool = False):
        # unread request body means the connection cannot be reused
        if self._wrapper.conn.their_state is h11.SEND_BODY:
            close = True
        await self.send_response(status_code, (message + "\n").encode("utf-8"), close=close)

    async def send_file(self, file_path:str, content_type:str, chunk_size:int = 512*1024):
        loop = asyncio.get_running_loop()
        f = await loop.run_in_executor(None, open_regular_file, file_path)
        try:
            file_size = os.fstat(f.fileno()).st_size
            headers = self.basic_headers()
            headers.extend([
                ("Content-Type", content_type.encode("ascii")),
                ("Content-Length", str(file_size).encode("ascii")),
            ])
            await self._wrapper.send(h11.Response(status_code=200, headers=headers))
            if self.method != "HEAD":
                bytes_remaining = file_size
                while bytes_remaining > 0:
                    chunk = await loop.run_in_executor(None, f.read, min(chunk_size, bytes_remaining))
                    if not chunk:
                        break
                    await self._wrapper.send(h11.Data(data=chunk))
                    bytes_remaining -= len(chunk)
            await self._wrapper.send(h11.EndOfMessage())
        finally:
            f.close()


class HTTPServer:
    """
    Accept loop plus one task per client connection.
    `listen` binds, `serve` runs until the listener is closed,
    `terminate` closes the listener and drops every open client connection.
    """
    def __init__(self, client_handler, host:str, port:int):
        self.client_handler = client_handler
        self.host = host
        self.port = port
        self.listener:Listener = None
        self.clients = set()
        self.client_tasks = set()

    async def __aenter__(self):
        await self.listen()
        self.__main_task = asyncio.create_task(self.serve())
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.__main_task.cancel()
        await self.terminate()

    async def listen(self):
        if self.listener is None:
            self.listener = Listener(self.host, self.port)
        await self.listener.bind()
        return self.listener.get_sockname()

    def get_sockname(self):
        if self.listener is None:
            return None
        return self.listener.get_sockname()

    async def terminate(self):
        if self.listener is not None:
            self.listener.close()
        for client in list(self.clients):
            client.abort()
        self.clients.clear()
        for task in list(self.client_tasks):
            task.cancel()
        self.client_tasks.clear()

    async def __handle_connection(self, connection:ClientConnection):
        wrapper = HTTPConnectionWrapper(connection)
        handler = self.client_handler()
        peer_ip, peer_port = connection.get_peer()
        logger.debug('[%s] New client connected from %s:%s' % (wrapper.client_id, peer_ip, peer_port))
        try:
            while True:
                if wrapper.conn.our_state in (h11.MUST_CLOSE, h11.CLOSED, h11.ERROR):
                    break
                if wrapper.conn.their_state in (h11.MUST_CLOSE, h11.CLOSED, h11.ERROR):
                    break
                if wrapper.conn.states == {h11.CLIENT: h11.DONE, h11.SERVER: h11.DONE}:
                    wrapper.conn.start_next_cycle()
                    continue

                try:
                    event = await wrapper.next_event()
                except h11.RemoteProtocolError as exc:
                    logger.debug('[%s] Protocol error: %s' % (wrapper.client_id, exc))
                    if wrapper.conn.our_state in (h11.IDLE, h11.SEND_RESPONSE):
                        await self.__send_simple(wrapper, exc.error_status_hint, 'Bad Request')
                    break

                if type(event) is h11.Request:
                    logger.debug('[%s] %s %s' % (wrapper.client_id, event.method.decode('ascii'), event.target.decode('ascii', errors='replace')))
                    try:
                        await handler._process_request(wrapper, event)
                    except ConnectionError as exc:
                        logger.debug('[%s] Peer went away: %s' % (wrapper.client_id, exc))
                        break
                    except Exception:
                        logger.exception('[%s] Error in request handler' % wrapper.client_id)
                        if wrapper.conn.our_state is h11.SEND_RESPONSE:
                            await self.__send_simple(wrapper, 500, 'Internal Server Error')
                        break

                    if wrapper.conn.our_state is h11.SEND_RESPONSE:
                        await self.__send_simple(wrapper, 500, 'Internal Server Error')
                    if wrapper.conn.our_state is h11.DONE:
                        await wrapper.discard_body()
                    continue

                if type(event) is h11.ConnectionClosed:
                    break
                logger.debug('[%s] Unexpected event type %s' % (wrapper.client_id, type(event)))
                break

        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug('[%s] Connection error: %r' % (wrapper.client_id, exc))
        finally:
            await wrapper.shutdown_and_clean_up()
            self.clients.discard(connection)

    async def __send_simple(self, wrapper:HTTPConnectionWrapper, status_code:int, message:str):
        body = (message + "\n").encode("utf-8")
        headers = basic_headers()
        headers.extend([
            ("Content-Type", b"text/plain; charset=utf-8"),
            ("Content-Length", str(len(body)).encode("ascii")),
            ("Connection", b"close"),
        ])
        try:
            await wrapper.send(h11.Response(status_code=status_code, headers=headers))
            await wrapper.send(h11.Data(data=body))
            await wrapper.send(h11.EndOfMessage())
        except Exception as exc:
            logger.debug('[%s] Could not send error response: %s' % (wrapper.client_id, exc))

    async def serve(self):
        if self.listener is None:
            await self.listen()
        async for connection in self.listener.serve():
            self.clients.add(connection)
            task = asyncio.create_task(self.__handle_connection(connection))
            self.client_tasks.add(task)
            task.add_done_callback(self.client_tasks.discard)
