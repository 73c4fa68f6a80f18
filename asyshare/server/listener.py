import asyncio
import logging

from asyshare.server.connection import ClientConnection
from asyshare.errors import BindError

logger = logging.getLogger('asyshare.listener')


class Listener:
	"""
	TCP listener handing out accepted connections through an async generator.
	`bind` and `serve` are separate so that bind failures reach the caller
	before any accept loop is started.
	"""
	def __init__(self, host:str, port:int, buffer_size:int = 65535):
		self.host = host
		self.port = port
		self.buffer_size = buffer_size
		self.connection_queue = asyncio.Queue()
		self.server:asyncio.AbstractServer = None
		self.closed_evt = asyncio.Event()

	async def __handle_connection(self, reader, writer):
		connection = ClientConnection(reader, writer, self.buffer_size)
		await self.connection_queue.put(connection)

	async def bind(self):
		if self.server is not None:
			return self.server
		try:
			self.server = await asyncio.start_server(self.__handle_connection, self.host, self.port)
		except OSError as e:
			raise BindError(self.host, self.port, e)
		logger.debug('Listening on %s:%s' % (self.host, self.port))
		return self.server

	def get_sockname(self):
		if self.server is None or len(self.server.sockets) == 0:
			return None
		return self.server.sockets[0].getsockname()

	def is_serving(self):
		return self.server is not None and self.server.is_serving()

	async def serve(self):
		if self.server is None:
			await self.bind()
		try:
			while self.server.is_serving():
				get_task = asyncio.ensure_future(self.connection_queue.get())
				close_task = asyncio.ensure_future(self.closed_evt.wait())
				try:
					await asyncio.wait([get_task, close_task], return_when=asyncio.FIRST_COMPLETED)
				finally:
					close_task.cancel()
					if not get_task.done():
						get_task.cancel()
				if get_task.done() and not get_task.cancelled():
					yield get_task.result()
					continue
				break
		finally:
			self.close()

	def close(self):
		self.closed_evt.set()
		if self.server is not None:
			self.server.close()

		# connections accepted but never picked up
		while not self.connection_queue.empty():
			connection = self.connection_queue.get_nowait()
			connection.abort()
