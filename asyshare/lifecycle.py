import asyncio
import logging
from typing import Dict, List

from asyshare.logsink import LogSink
from asyshare.common.target import ServerConfig, ServerState
from asyshare.common.netinfo import get_local_ips
from asyshare.server.httpserver import HTTPServer
from asyshare.handlers.router import ShareSite
from asyshare.handlers.mutation import MAX_UPLOAD_SIZE
from asyshare.errors import ShareError, AlreadyRunning, NotRunning

logger = logging.getLogger('asyshare.lifecycle')


class ControlResult:
	def __init__(self, success:bool, message:str):
		self.success = success
		self.message = message

	def to_dict(self):
		return {
			'success': self.success,
			'message': self.message,
		}

	def __repr__(self):
		return 'ControlResult(success=%r, message=%r)' % (self.success, self.message)


class ServerLifecycleManager:
	"""
	Owns the single file server of the process.

	State and the running server are only touched under the state lock.
	Log messages are appended after the lock is released. All methods must
	be awaited on the event loop that runs the server, see `BlockingControl`
	for calling them from other threads.
	"""
	def __init__(self, lookup_directory:str = './api', log_directory:str = './log', max_upload_size:int = MAX_UPLOAD_SIZE, log_capacity:int = 100):
		self.lookup_directory = lookup_directory
		self.max_upload_size = max_upload_size
		self.logsink = LogSink(log_capacity, log_directory)

		self.__state_lock = asyncio.Lock()
		self.__state = ServerState.IDLE
		self.__server:HTTPServer = None
		self.__config:ServerConfig = None
		self.__serve_task:asyncio.Task = None

	async def start_server(self, directory:str, address:str, port) -> ControlResult:
		async with self.__state_lock:
			try:
				if self.__state is ServerState.RUNNING:
					raise AlreadyRunning()

				config = ServerConfig.from_params(directory, address, port)
				site = ShareSite(
					config,
					self.logsink,
					lookup_directory = self.lookup_directory,
					max_upload_size = self.max_upload_size,
				)
				server = HTTPServer(site.create_handler, config.bind_address, config.port)
				await server.listen()
			except ShareError as e:
				logger.debug('Start rejected: %s' % e.message)
				return ControlResult(False, e.message)

			self.__server = server
			self.__config = config
			self.__state = ServerState.RUNNING
			self.__serve_task = asyncio.create_task(self.__run_listener(server))

		address = config.get_address()
		self.logsink.append('Starting server...')
		self.logsink.append('Static directory: %s' % config.root_directory)
		self.logsink.append('Listen address: %s' % address)
		self.logsink.append('URL: %s' % config.get_url())
		self.logsink.append('Lookup API (example): http://%s/lookup/get/2 ==> %s/txt/2.txt' % (address, self.lookup_directory))
		self.logsink.append('Lookup API (json example): http://%s/lookup/getjson/1 ==> %s/json/1.json' % (address, self.lookup_directory))
		self.logsink.append('-' * 40)
		self.logsink.append('Server started successfully!')
		return ControlResult(True, 'Server started successfully!\nURL: %s' % config.get_url())

	async def __run_listener(self, server:HTTPServer):
		try:
			await server.serve()
			error = 'accept loop ended unexpectedly'
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.exception('Accept loop failed')
			error = str(e)

		async with self.__state_lock:
			# a stop or a newer start already replaced this server
			if self.__server is not server:
				return
			self.__server = None
			self.__config = None
			self.__serve_task = None
			self.__state = ServerState.IDLE
		await server.terminate()
		self.logsink.append('Server error: %s' % error)

	async def stop_server(self) -> ControlResult:
		close_error = None
		async with self.__state_lock:
			if self.__state is not ServerState.RUNNING:
				return ControlResult(False, NotRunning().message)

			server = self.__server
			serve_task = self.__serve_task
			self.__server = None
			self.__config = None
			self.__serve_task = None
			self.__state = ServerState.IDLE

			try:
				await server.terminate()
			except Exception as e:
				logger.debug('Error closing server: %r' % e)
				close_error = e
			serve_task.cancel()
			await asyncio.gather(serve_task, return_exceptions=True)

		if close_error is not None:
			self.logsink.append('Error while stopping server: %s' % close_error)
			return ControlResult(False, 'Error while stopping server: %s' % close_error)
		self.logsink.append('Server stopped')
		return ControlResult(True, 'Server stopped')

	async def get_state(self) -> ServerState:
		async with self.__state_lock:
			return self.__state

	async def get_run_state(self) -> bool:
		return (await self.get_state()) is ServerState.RUNNING

	async def get_config(self) -> ServerConfig:
		async with self.__state_lock:
			return self.__config

	async def get_logs(self) -> List[str]:
		return self.logsink.get_logs()

	async def clear_logs(self):
		self.logsink.clear()

	async def set_save_logs(self, enable:bool) -> ControlResult:
		try:
			self.logsink.set_persist(enable)
		except OSError as e:
			self.logsink.append('Cannot enable log saving: %s' % e)
			return ControlResult(False, 'Cannot enable log saving: %s' % e)
		if enable is True:
			self.logsink.append('Log saving enabled')
			return ControlResult(True, 'Log saving enabled')
		self.logsink.append('Log saving disabled')
		return ControlResult(True, 'Log saving disabled')

	async def get_local_ips(self) -> List[Dict[str, str]]:
		return get_local_ips()
