import os
import logging
import datetime
import threading
from collections import deque
from typing import List

from asyshare import logger

LOG_FILE_NAME = 'log.txt'

class LogEntry:
	def __init__(self, message:str, timestamp:datetime.datetime = None):
		self.message = message
		self.timestamp = timestamp
		if timestamp is None:
			self.timestamp = datetime.datetime.now()

	def __repr__(self):
		return str(self.__dict__)

	def __str__(self):
		return '[%s] %s' % (self.timestamp.strftime('%Y-%m-%d %H:%M:%S'), self.message)


class LogSink:
	"""
	Bounded, thread-safe buffer of operational messages.

	The newest `capacity` entries are kept in insertion order, older ones
	are evicted. Every message is also forwarded to the `asyshare` logger.
	When persistence is enabled a FileHandler appends each message to
	`<log_directory>/log.txt`.
	"""
	def __init__(self, capacity:int = 100, log_directory:str = 'log'):
		self.capacity = capacity
		self.log_directory = log_directory
		self.__entries = deque(maxlen=capacity)
		self.__lock = threading.Lock()
		self.__persist_lock = threading.Lock()
		self.__file_handler = None

	@property
	def persisting(self) -> bool:
		return self.__file_handler is not None

	def append(self, message:str):
		entry = LogEntry(message)
		with self.__lock:
			self.__entries.append(entry)

		logger.info(message)
		with self.__persist_lock:
			if self.__file_handler is not None:
				# handled directly, the file is not attached to any logger
				record = logger.makeRecord(logger.name, logging.INFO, __file__, 0, message, None, None)
				self.__file_handler.handle(record)
		return entry

	def snapshot(self) -> List[LogEntry]:
		with self.__lock:
			return list(self.__entries)

	def get_logs(self) -> List[str]:
		return [entry.message for entry in self.snapshot()]

	def clear(self):
		with self.__lock:
			self.__entries.clear()

	def set_persist(self, enable:bool):
		with self.__persist_lock:
			if enable is True and self.__file_handler is None:
				os.makedirs(self.log_directory, exist_ok=True)
				handler = logging.FileHandler(os.path.join(self.log_directory, LOG_FILE_NAME), encoding='utf-8', delay=True)
				handler.setFormatter(logging.Formatter('[%(asctime)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S'))
				self.__file_handler = handler

			elif enable is False and self.__file_handler is not None:
				self.__file_handler.close()
				self.__file_handler = None
