import os
import stat
import enum
import ipaddress

from asyshare.errors import EmptyDirectory, DirectoryNotFound, NotADirectory, InvalidAddress, InvalidPort


class ServerState(enum.Enum):
	IDLE = 'Idle'
	RUNNING = 'Running'


class ServerConfig:
	"""
	Root directory, bind address and port of one server instance.
	Built fresh by `from_params` on every start attempt and never modified afterwards.
	"""
	__slots__ = ('root_directory', 'bind_address', 'port')

	def __init__(self, root_directory:str, bind_address:str, port:int):
		object.__setattr__(self, 'root_directory', root_directory)
		object.__setattr__(self, 'bind_address', bind_address)
		object.__setattr__(self, 'port', port)

	def __setattr__(self, name, value):
		raise AttributeError('ServerConfig is immutable')

	def __repr__(self):
		return 'ServerConfig(root_directory=%r, bind_address=%r, port=%r)' % (self.root_directory, self.bind_address, self.port)

	def __eq__(self, other):
		if not isinstance(other, ServerConfig):
			return NotImplemented
		return (self.root_directory, self.bind_address, self.port) == (other.root_directory, other.bind_address, other.port)

	def __hash__(self):
		return hash((self.root_directory, self.bind_address, self.port))

	@staticmethod
	def from_params(directory:str, address:str, port):
		"""
		Validates the raw (directory, address, port) triple in a fixed order
		and raises the first failure.
		"""
		if directory is None or directory == '':
			raise EmptyDirectory()

		try:
			root = os.path.abspath(directory)
			st = os.stat(root)
		except (OSError, ValueError) as e:
			raise DirectoryNotFound('Directory does not exist or cannot be accessed: %s' % e)

		if not stat.S_ISDIR(st.st_mode):
			raise NotADirectory()

		if address is None or address == '':
			raise InvalidAddress('Please select or enter a listen IP address!')
		try:
			ip = ipaddress.ip_address(address)
		except ValueError:
			raise InvalidAddress('Invalid IP address: %s' % address)

		if port is None or str(port).strip() == '':
			raise InvalidPort('Please enter a listen port!')
		if isinstance(port, bool):
			raise InvalidPort('Port must be a number: %s' % port)
		try:
			port_num = int(str(port).strip())
		except ValueError:
			raise InvalidPort('Port must be a number: %s' % port)
		if port_num < 1 or port_num > 65535:
			raise InvalidPort('Port must be between 1 and 65535!')

		return ServerConfig(root, str(ip), port_num)

	def get_host(self):
		if ':' in self.bind_address:
			return '[%s]' % self.bind_address
		return self.bind_address

	def get_address(self):
		return '%s:%s' % (self.get_host(), self.port)

	def get_url(self):
		return 'http://%s/' % self.get_address()
