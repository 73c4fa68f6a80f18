import os
import json
import logging

from asyshare.logsink import LogSink
from asyshare.common.pathguard import check_segment
from asyshare.handlers.multipart import MultipartStreamProcessor
from asyshare.errors import ShareError, ConflictError, InvalidRequest, InvalidName, InvalidTargetDirectory

logger = logging.getLogger('asyshare.mutation')

MAX_JSON_BODY = 1024*1024
MAX_UPLOAD_SIZE = 32*1024*1024


class MutationRequest:
	"""Base of the mutating requests. `target_directory` is an absolute path below the root."""
	def __init__(self, target_directory:str):
		self.target_directory = target_directory

	def __repr__(self):
		return '%s(%r)' % (self.__class__.__name__, self.__dict__)

class UploadRequest(MutationRequest):
	def __init__(self, target_directory:str, boundary:str, body):
		MutationRequest.__init__(self, target_directory)
		self.boundary = boundary
		self.body = body  # async iterator of bytes

class CreateFolderRequest(MutationRequest):
	def __init__(self, target_directory:str, name:str):
		MutationRequest.__init__(self, target_directory)
		self.name = name

class CreateFileRequest(MutationRequest):
	def __init__(self, target_directory:str, name:str):
		MutationRequest.__init__(self, target_directory)
		self.name = name


JSON_ACTIONS = {
	'createFolder': CreateFolderRequest,
	'createFile': CreateFileRequest,
}

def parse_create_request(target_directory:str, body:bytes) -> MutationRequest:
	"""Builds a create request from a `{"action": ..., "name": ...}` JSON body."""
	try:
		data = json.loads(body.decode('utf-8'))
	except (UnicodeDecodeError, ValueError):
		raise InvalidRequest()
	if not isinstance(data, dict):
		raise InvalidRequest()

	request_cls = JSON_ACTIONS.get(data.get('action'))
	if request_cls is None:
		raise InvalidRequest('Invalid action')

	name = data.get('name')
	if not isinstance(name, str):
		raise InvalidName()
	return request_cls(target_directory, name)


class UploadResult:
	def __init__(self, saved, skipped):
		self.saved = saved
		self.skipped = skipped

	def get_message(self):
		msg = 'Uploaded %d file(s)' % len(self.saved)
		if len(self.skipped) > 0:
			msg += ', skipped %d' % len(self.skipped)
		return msg


class MutationHandler:
	def __init__(self, logsink:LogSink, max_upload_size:int = MAX_UPLOAD_SIZE):
		self.logsink = logsink
		self.max_upload_size = max_upload_size

	async def handle(self, request:MutationRequest):
		"""Runs a mutation request, returns the success message. Failures raise ShareError."""
		self.check_target(request.target_directory)
		if isinstance(request, UploadRequest):
			result = await self.upload(request)
			return result.get_message()
		if isinstance(request, CreateFolderRequest):
			self.create_folder(request.target_directory, request.name)
			return 'Folder created successfully'
		if isinstance(request, CreateFileRequest):
			self.create_file(request.target_directory, request.name)
			return 'File created successfully'
		raise InvalidRequest('Invalid action')

	def check_target(self, target_directory:str):
		if not os.path.isdir(target_directory):
			raise InvalidTargetDirectory()

	def create_folder(self, target_directory:str, name:str):
		check_segment(name, InvalidName)
		self.check_target(target_directory)
		folder_path = os.path.join(target_directory, name)
		if os.path.lexists(folder_path):
			raise ConflictError('Folder already exists')
		try:
			os.makedirs(folder_path)
		except FileExistsError:
			raise ConflictError('Folder already exists')
		except OSError as e:
			raise ShareError('Failed to create folder: %s' % e)
		self.logsink.append('Folder created: %s' % folder_path)
		return folder_path

	def create_file(self, target_directory:str, name:str):
		check_segment(name, InvalidName)
		self.check_target(target_directory)
		file_path = os.path.join(target_directory, name)
		if os.path.lexists(file_path):
			raise ConflictError('File already exists')
		try:
			with open(file_path, 'x'):
				pass
		except FileExistsError:
			raise ConflictError('File already exists')
		except OSError as e:
			raise ShareError('Failed to create file: %s' % e)
		self.logsink.append('File created: %s' % file_path)
		return file_path

	async def upload(self, request:UploadRequest) -> UploadResult:
		"""
		Streams the multipart body into the target directory.

		Only file parts of the `files` field are stored, each under its base
		name. Files that cannot be stored are logged and skipped. Raises
		InvalidRequest for malformed framing or when no file was sent, and
		PayloadTooLarge when the body exceeds the upload limit.
		"""
		self.check_target(request.target_directory)
		processor = MultipartStreamProcessor(
			request.boundary,
			request.target_directory,
			field_name = 'files',
			print_cb = self.logsink.append,
		)
		try:
			async for chunk in request.body:
				processor.process_chunk(chunk)
			processor.finalize()
		except ValueError as e:
			logger.debug('Malformed upload: %s' % e)
			raise InvalidRequest('Failed to parse form: %s' % e)
		finally:
			processor.cleanup()

		if processor.file_parts == 0:
			raise InvalidRequest('No files uploaded')
		return UploadResult(processor.completed_files, processor.skipped_files)
