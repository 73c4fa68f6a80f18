import os
import stat
import logging
import mimetypes

import h11

from asyshare.logsink import LogSink
from asyshare.common.target import ServerConfig
from asyshare.common.pathguard import resolve_under_root, clean_url_path
from asyshare.server.httpserver import HTTPServerHandler
from asyshare.handlers.listing import read_directory, render_listing
from asyshare.handlers.lookup import LookupStore
from asyshare.handlers.multipart import get_boundary
from asyshare.handlers.mutation import MutationHandler, UploadRequest, parse_create_request, MAX_JSON_BODY, MAX_UPLOAD_SIZE
from asyshare.errors import ShareError, NotFoundError, InvalidRequest, PayloadTooLarge

logger = logging.getLogger('asyshare.router')

INDEX_FILE = 'index.html'


class Route:
    """A (matcher, handler) pair. Lower rank is tried first."""
    rank = 0

    def __init__(self, handler, methods = ('GET', 'HEAD')):
        self.handler = handler
        self.methods = methods

    def match(self, path:str):
        raise NotImplementedError()


class ExactRoute(Route):
    rank = 0

    def __init__(self, path:str, handler, methods = ('GET', 'HEAD')):
        Route.__init__(self, handler, methods)
        self.path = path

    def match(self, path:str):
        if path == self.path:
            return ''
        return None

    def __repr__(self):
        return 'ExactRoute(%r)' % self.path


class PrefixRoute(Route):
    """Matches every path below `prefix`, the remainder is the route parameter."""
    rank = 1

    def __init__(self, prefix:str, handler, methods = ('GET', 'HEAD')):
        Route.__init__(self, handler, methods)
        self.prefix = prefix

    def match(self, path:str):
        if path.startswith(self.prefix):
            return path[len(self.prefix):]
        return None

    def __repr__(self):
        return 'PrefixRoute(%r)' % self.prefix


class CatchAllRoute(Route):
    rank = 2

    def match(self, path:str):
        return path

    def __repr__(self):
        return 'CatchAllRoute()'


class RouteTable:
    """
    Ordered route list. Exact routes win over prefix routes, longer
    prefixes over shorter ones, and the catch-all comes last.
    Routes of the same kind keep their registration order.
    """
    def __init__(self):
        self.routes = []

    def add(self, route:Route):
        self.routes.append(route)
        self.routes.sort(key=self.__sort_key)
        return route

    @staticmethod
    def __sort_key(route):
        if isinstance(route, PrefixRoute):
            return (route.rank, -len(route.prefix))
        return (route.rank, 0)

    def resolve(self, path:str):
        for route in self.routes:
            param = route.match(path)
            if param is not None:
                return route, param
        return None, None


def get_content_type(file_path:str):
    content_type, _ = mimetypes.guess_type(file_path)
    if content_type is None:
        return 'application/octet-stream'
    if content_type.startswith('text/'):
        content_type += '; charset=utf-8'
    return content_type


class ShareSite:
    """Everything a request needs: the config of the running server and its collaborators."""
    def __init__(self, config:ServerConfig, logsink:LogSink, lookup_directory:str = './api', max_upload_size:int = MAX_UPLOAD_SIZE):
        self.config = config
        self.logsink = logsink
        self.lookup = LookupStore(lookup_directory, logsink)
        self.mutation = MutationHandler(logsink, max_upload_size)
        self.max_upload_size = max_upload_size
        self.routes = RouteTable()
        self.routes.add(PrefixRoute('/lookup/get/', RequestRouter.serve_text_lookup))
        self.routes.add(PrefixRoute('/lookup/getjson/', RequestRouter.serve_json_lookup))
        self.routes.add(CatchAllRoute(RequestRouter.serve_path, methods=('GET', 'HEAD', 'POST')))

    def create_handler(self):
        return RequestRouter(self)


class RequestRouter(HTTPServerHandler):
    def __init__(self, site:ShareSite):
        HTTPServerHandler.__init__(self)
        self.site = site

    async def do_GET(self, request):
        await self.dispatch()

    async def do_HEAD(self, request):
        await self.dispatch()

    async def do_POST(self, request):
        await self.dispatch()

    async def dispatch(self):
        try:
            path, _ = self.split_target()
        except UnicodeDecodeError:
            return await self.send_error(400, 'Bad Request')

        route, param = self.site.routes.resolve(path)
        if route is None:
            return await self.send_error(404, 'Not Found')
        if self.method not in route.methods:
            return await self.send_error(405, 'Method Not Allowed')

        try:
            await route.handler(self, path, param)
        except ConnectionError:
            raise
        except ShareError as e:
            if e.status_code >= 500:
                self.site.logsink.append('Error handling %s %s: %s' % (self.method, path, e.message))
            await self.__send_failure(e.status_code, e.message)
        except Exception as e:
            logger.exception('Unhandled error for %s %s' % (self.method, path))
            self.site.logsink.append('Error handling %s %s: %s' % (self.method, path, e))
            await self.__send_failure(500, 'Internal Server Error')

    async def __send_failure(self, status_code:int, message:str):
        if self._wrapper.conn.our_state is not h11.SEND_RESPONSE:
            # response already on the wire, only dropping the connection is left
            raise ConnectionError('Response interrupted: %s' % message)
        await self.send_error(status_code, message)

    async def serve_text_lookup(self, path:str, artifact_id:str):
        await self.__serve_lookup('txt', artifact_id)

    async def serve_json_lookup(self, path:str, artifact_id:str):
        await self.__serve_lookup('json', artifact_id)

    async def __serve_lookup(self, kind:str, artifact_id:str):
        content = self.site.lookup.read(kind, artifact_id)
        await self.send_response(200, content, content_type=self.site.lookup.get_content_type(kind))

    async def serve_path(self, path:str, param:str):
        fs_path = resolve_under_root(self.site.config.root_directory, path)
        if self.method == 'POST':
            return await self.__mutate(fs_path)

        try:
            st = os.stat(fs_path)
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError()
        except OSError as e:
            raise ShareError('Cannot access %s: %s' % (path, e.strerror))

        if stat.S_ISDIR(st.st_mode):
            index_path = os.path.join(fs_path, INDEX_FILE)
            if os.path.isfile(index_path):
                return await self.send_file(index_path, 'text/html; charset=utf-8')
            return await self.__serve_listing(fs_path, clean_url_path(path))
        if not stat.S_ISREG(st.st_mode):
            # fifos, sockets and devices are never served
            raise NotFoundError()

        await self.send_file(fs_path, get_content_type(fs_path))

    async def __serve_listing(self, fs_path:str, request_path:str):
        try:
            entries = read_directory(fs_path)
        except OSError as e:
            raise ShareError('Cannot read directory %s: %s' % (request_path, e.strerror))
        body = render_listing(entries, request_path).encode('utf-8')
        await self.send_response(200, body, content_type='text/html; charset=utf-8')

    async def __mutate(self, fs_path:str):
        self.site.mutation.check_target(fs_path)
        content_type = self.get_header('content-type', '').lower()
        content_length = self.get_content_length()

        if 'application/json' in content_type:
            if content_length is not None and content_length > MAX_JSON_BODY:
                raise PayloadTooLarge()
            body = await self.read_body(MAX_JSON_BODY)
            mutation_request = parse_create_request(fs_path, body)

        elif 'multipart/form-data' in content_type:
            boundary = get_boundary(self.get_header('content-type'))
            if boundary is None:
                raise InvalidRequest('Failed to parse form: missing boundary')
            if content_length is not None and content_length > self.site.max_upload_size:
                raise PayloadTooLarge()
            mutation_request = UploadRequest(fs_path, boundary, self.iter_body(self.site.max_upload_size))

        else:
            raise InvalidRequest('Unsupported content type')

        message = await self.site.mutation.handle(mutation_request)
        await self.send_response(200, message.encode('utf-8'))
