import json
import asyncio
import logging
import threading

from asyshare.lifecycle import ServerLifecycleManager, ControlResult
from asyshare.server.httpserver import HTTPServer, HTTPServerHandler
from asyshare.handlers.router import RouteTable, ExactRoute

logger = logging.getLogger('asyshare.control')

MAX_CONTROL_BODY = 64*1024


class BlockingControl:
    """
    Synchronous facade over ServerLifecycleManager for callers that do not
    run an event loop, like a GUI shell.

    The manager lives on an event loop driven by a background daemon thread,
    every call is forwarded to that loop and waits for its result.
    """
    def __init__(self, **manager_kwargs):
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.__run_loop, name='asyshare-loop', daemon=True)
        self.thread.start()
        self.manager:ServerLifecycleManager = self.__call(self.__create_manager(manager_kwargs))

    def __run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    async def __create_manager(self, manager_kwargs):
        return ServerLifecycleManager(**manager_kwargs)

    def __call(self, coro, timeout = None):
        if self.loop.is_closed():
            coro.close()
            raise RuntimeError('BlockingControl is closed')
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def start_server(self, directory:str, address:str, port) -> ControlResult:
        return self.__call(self.manager.start_server(directory, address, port))

    def stop_server(self) -> ControlResult:
        return self.__call(self.manager.stop_server())

    def get_run_state(self) -> bool:
        return self.__call(self.manager.get_run_state())

    def get_logs(self):
        return self.__call(self.manager.get_logs())

    def clear_logs(self):
        return self.__call(self.manager.clear_logs())

    def set_save_logs(self, enable:bool) -> ControlResult:
        return self.__call(self.manager.set_save_logs(enable))

    def get_local_ips(self):
        return self.__call(self.manager.get_local_ips())

    def close(self):
        """Stops the server if it runs, then shuts the background loop down."""
        if self.loop.is_closed():
            return
        if self.get_run_state() is True:
            self.stop_server()
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join()
        self.loop.close()


class ControlHandler(HTTPServerHandler):
    """
    JSON over HTTP adapter of the control operations. Each endpoint maps
    to exactly one ServerLifecycleManager call.
    """
    def __init__(self, manager:ServerLifecycleManager):
        HTTPServerHandler.__init__(self)
        self.manager = manager

    async def do_GET(self, request):
        await self.dispatch()

    async def do_POST(self, request):
        await self.dispatch()

    async def dispatch(self):
        try:
            path, _ = self.split_target()
        except UnicodeDecodeError:
            return await self.send_error(400, 'Bad Request')

        route, _ = CONTROL_ROUTES.resolve(path)
        if route is None:
            return await self.send_error(404, 'Not Found')
        if self.method not in route.methods:
            return await self.send_error(405, 'Method Not Allowed')
        await route.handler(self)

    async def read_json(self):
        """Request body as a JSON object, None if it is not one."""
        body = await self.read_body(MAX_CONTROL_BODY)
        try:
            data = json.loads(body.decode('utf-8'))
        except (UnicodeDecodeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return data

    async def send_json(self, data, status_code:int = 200):
        body = json.dumps(data).encode('utf-8')
        await self.send_response(status_code, body, content_type='application/json')

    async def start_server(self):
        data = await self.read_json()
        if data is None:
            return await self.send_error(400, 'Invalid request')
        result = await self.manager.start_server(
            data.get('dir', ''),
            data.get('ip', ''),
            data.get('port', ''),
        )
        await self.send_json(result.to_dict())

    async def stop_server(self):
        result = await self.manager.stop_server()
        await self.send_json(result.to_dict())

    async def get_logs(self):
        await self.send_json(await self.manager.get_logs())

    async def clear_logs(self):
        await self.manager.clear_logs()
        await self.send_response(200)

    async def toggle_save_logs(self):
        data = await self.read_json()
        if data is None:
            return await self.send_error(400, 'Invalid request')
        result = await self.manager.set_save_logs(data.get('enable') is True)
        if result.success is False:
            return await self.send_error(500, result.message)
        await self.send_response(200)

    async def get_local_ips(self):
        await self.send_json(await self.manager.get_local_ips())

    async def get_run_state(self):
        await self.send_json({'running': await self.manager.get_run_state()})


CONTROL_ROUTES = RouteTable()
CONTROL_ROUTES.add(ExactRoute('/api/startServer', ControlHandler.start_server, methods=('POST',)))
CONTROL_ROUTES.add(ExactRoute('/api/stopServer', ControlHandler.stop_server, methods=('POST',)))
CONTROL_ROUTES.add(ExactRoute('/api/getLogs', ControlHandler.get_logs, methods=('GET',)))
CONTROL_ROUTES.add(ExactRoute('/api/clearLogs', ControlHandler.clear_logs, methods=('POST',)))
CONTROL_ROUTES.add(ExactRoute('/api/toggleSaveLogs', ControlHandler.toggle_save_logs, methods=('POST',)))
CONTROL_ROUTES.add(ExactRoute('/api/getLocalIPs', ControlHandler.get_local_ips, methods=('GET',)))
CONTROL_ROUTES.add(ExactRoute('/api/getRunState', ControlHandler.get_run_state, methods=('GET',)))


def create_control_server(manager:ServerLifecycleManager, host:str = '127.0.0.1', port:int = 8090) -> HTTPServer:
    """HTTPServer serving the control endpoints of `manager`. Call `listen` and `serve` on it."""
    return HTTPServer(lambda: ControlHandler(manager), host, port)
