import os

from asyshare.logsink import LogSink
from asyshare.common.pathguard import is_safe_segment
from asyshare.errors import ShareError, NotFoundError, InvalidRequest


class LookupStore:
	"""
	Side directory of ID keyed artifacts, outside of the served root.
	`<directory>/txt/<id>.txt` holds the text artifacts,
	`<directory>/json/<id>.json` the JSON ones.
	"""
	KINDS = {
		'txt': ('txt', '.txt', 'text/plain; charset=utf-8'),
		'json': ('json', '.json', 'application/json'),
	}

	def __init__(self, directory:str = './api', logsink:LogSink = None):
		self.directory = directory
		self.logsink = logsink

	def get_content_type(self, kind:str):
		return self.KINDS[kind][2]

	def read(self, kind:str, artifact_id:str) -> bytes:
		"""
		Returns the artifact contents. `artifact_id` must already be URL-decoded.
		Raises InvalidRequest for IDs that are not a single safe path
		component, NotFoundError when the artifact does not exist.
		Other read failures are logged without the filesystem path and
		raised as a generic 500.
		"""
		if artifact_id == '':
			raise NotFoundError()
		if not is_safe_segment(artifact_id):
			raise InvalidRequest('Invalid ID')

		subdir, ext, _ = self.KINDS[kind]
		file_path = os.path.join(self.directory, subdir, artifact_id + ext)
		try:
			with open(file_path, 'rb') as f:
				return f.read()
		except (FileNotFoundError, NotADirectoryError):
			raise NotFoundError()
		except OSError as e:
			if self.logsink is not None:
				self.logsink.append('Error reading %s artifact %r: %s' % (kind, artifact_id, e.strerror or e.__class__.__name__))
			raise ShareError('Internal Server Error')
