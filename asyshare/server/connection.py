import asyncio


class ClientConnection:
	def __init__(self, reader:asyncio.StreamReader, writer:asyncio.StreamWriter, buffer_size:int = 65535):
		self.reader = reader
		self.writer = writer
		self.buffer_size = buffer_size
		self.closing = False
		self.closed_evt = asyncio.Event()

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	def get_extra_info(self, name, default=None):
		return self.writer.get_extra_info(name, default)

	def get_peer(self):
		peer = self.get_extra_info('peername')
		if peer is None:
			return '?', 0
		return peer[0], peer[1]

	async def close(self):
		if self.closing is True:
			return
		self.closing = True
		if self.writer is not None:
			self.writer.close()
		self.closed_evt.set()

	def abort(self):
		"""Drops the connection without flushing pending data."""
		self.closing = True
		if self.writer is not None:
			transport = self.writer.transport
			if transport is not None:
				transport.abort()
		self.closed_evt.set()

	async def write(self, data:bytes):
		self.writer.write(data)
		await self.writer.drain()

	async def read_one(self) -> bytes:
		if self.closing is True:
			return b''
		return await self.reader.read(self.buffer_size)
