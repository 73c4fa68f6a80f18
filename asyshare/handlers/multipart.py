import os
import re
import tempfile

from asyshare.common.pathguard import base_name, is_safe_segment

FILENAME_RE = re.compile(r'(?:^|;)\s*filename="([^"]*)"', re.IGNORECASE)
FILENAME_BARE_RE = re.compile(r'(?:^|;)\s*filename=([^;\s"]+)', re.IGNORECASE)
NAME_RE = re.compile(r'(?:^|;)\s*name="([^"]*)"', re.IGNORECASE)
NAME_BARE_RE = re.compile(r'(?:^|;)\s*name=([^;\s"]+)', re.IGNORECASE)
BOUNDARY_RE = re.compile(r'boundary=("[^"]+"|[^;\s]+)', re.IGNORECASE)

MAX_HEADER_SIZE = 8192
UPLOAD_FILE_MODE = 0o644

def get_boundary(content_type:str):
	if content_type is None:
		return None
	m = BOUNDARY_RE.search(content_type)
	if m is None:
		return None
	boundary = m.group(1).strip('"')
	if not boundary:
		return None
	return boundary

def _param(regexes, text):
	for regex in regexes:
		m = regex.search(text)
		if m is not None:
			return m.group(1)
	return None


class MultipartStreamProcessor:
	"""
	Streaming multipart/form-data parser that writes the file parts of one
	form field straight to disk.

	Each file goes to a uniquely named hidden `.uploading` file first and is
	renamed over the final name once its part is complete. A file that cannot be stored is reported
	through `print_cb` and skipped, the rest of the upload continues.
	Malformed framing raises ValueError.
	"""

	def __init__(self, boundary:str, target_path:str, field_name:str = 'files', print_cb = None):
		self.delimiter = b'--' + boundary.encode('latin-1')
		self.body_delimiter = b'\r\n' + self.delimiter
		self.target_path = target_path
		self.field_name = field_name
		self.print_cb = print_cb

		# State tracking
		self.buffer = b''
		self.state = 'preamble'  # 'preamble', 'delimiter', 'headers', 'body', 'done'
		self.current_file_info = None
		self.current_file_handle = None
		self.temp_files = []
		self.completed_files = []
		self.skipped_files = []
		self.file_parts = 0

	def print(self, msg=''):
		if self.print_cb is None:
			return
		self.print_cb(msg)

	def process_chunk(self, chunk:bytes):
		self.buffer += chunk

		while True:
			if self.state == 'preamble':
				pos = self.buffer.find(self.delimiter)
				if pos == -1:
					# keep a possible partial delimiter
					keep = len(self.delimiter)
					if len(self.buffer) > keep:
						self.buffer = self.buffer[-keep:]
					return
				self.buffer = self.buffer[pos + len(self.delimiter):]
				self.state = 'delimiter'

			elif self.state == 'delimiter':
				if len(self.buffer) < 2:
					return
				if self.buffer.startswith(b'--'):
					self.buffer = b''
					self.state = 'done'
					return
				if self.buffer.startswith(b'\r\n'):
					self.buffer = self.buffer[2:]
					self.state = 'headers'
					continue
				raise ValueError('Malformed multipart delimiter')

			elif self.state == 'headers':
				header_end = self.buffer.find(b'\r\n\r\n')
				if header_end == -1:
					if len(self.buffer) > MAX_HEADER_SIZE:
						raise ValueError('Multipart headers too long or malformed')
					return
				header_section = self.buffer[:header_end]
				self.buffer = self.buffer[header_end + 4:]
				self._start_part(header_section)
				self.state = 'body'

			elif self.state == 'body':
				pos = self.buffer.find(self.body_delimiter)
				if pos == -1:
					# everything except a possible partial delimiter belongs to the part
					write_size = len(self.buffer) - len(self.body_delimiter)
					if write_size > 0:
						self._write_file_data(self.buffer[:write_size])
						self.buffer = self.buffer[write_size:]
					return
				self._write_file_data(self.buffer[:pos])
				self.buffer = self.buffer[pos + len(self.body_delimiter):]
				self._finalize_current_file()
				self.state = 'delimiter'

			else:
				# epilogue is ignored
				self.buffer = b''
				return

	def _start_part(self, header_section:bytes):
		headers_text = header_section.decode('utf-8', errors='surrogateescape')
		disposition = None
		for line in headers_text.split('\r\n'):
			hname, _, value = line.partition(':')
			if hname.strip().lower() == 'content-disposition':
				disposition = value.strip()
				break

		self.current_file_info = None
		if disposition is None:
			return

		field = _param([NAME_RE, NAME_BARE_RE], disposition)
		filename = _param([FILENAME_RE, FILENAME_BARE_RE], disposition)
		if field != self.field_name or not filename:
			return

		self.file_parts += 1
		safe_filename = base_name(filename)
		if not is_safe_segment(safe_filename):
			self._skip(filename, 'invalid file name')
			return
		self._start_new_file(safe_filename)

	def _start_new_file(self, filename:str):
		file_path = os.path.join(self.target_path, filename)
		try:
			# unique, exclusively created name so no existing file is touched
			fd, temp_file_path = tempfile.mkstemp(prefix='.', suffix='.uploading', dir=self.target_path)
		except OSError as e:
			self._skip(filename, 'cannot create file %s: %s' % (file_path, e))
			return
		self.current_file_handle = os.fdopen(fd, 'wb')
		self.temp_files.append(temp_file_path)
		self.current_file_info = {
			'filename': filename,
			'temp_path': temp_file_path,
			'final_path': file_path,
			'size': 0
		}

	def _write_file_data(self, data:bytes):
		if self.current_file_handle is None or not data:
			return
		try:
			self.current_file_handle.write(data)
			self.current_file_info['size'] += len(data)
		except OSError as e:
			self._abort_current_file('error saving file %s: %s' % (self.current_file_info['final_path'], e))

	def _finalize_current_file(self):
		if self.current_file_handle is None:
			self.current_file_info = None
			return None

		info = self.current_file_info
		try:
			self.current_file_handle.close()
			self.current_file_handle = None
			os.chmod(info['temp_path'], UPLOAD_FILE_MODE)
			os.replace(info['temp_path'], info['final_path'])
		except OSError as e:
			self._abort_current_file('error saving file %s: %s' % (info['final_path'], e))
			return None

		self.temp_files.remove(info['temp_path'])
		file_info = {
			'filename': info['filename'],
			'size': info['size'],
			'path': info['final_path'],
		}
		self.completed_files.append(file_info)
		self.current_file_info = None
		self.print('File uploaded: %s' % file_info['path'])
		return file_info

	def _skip(self, filename:str, reason:str):
		self.skipped_files.append(filename)
		self.print('Upload of %r skipped: %s' % (filename, reason))

	def _abort_current_file(self, reason:str):
		info = self.current_file_info
		if self.current_file_handle is not None:
			try:
				self.current_file_handle.close()
			except OSError:
				pass
			self.current_file_handle = None
		self._remove_temp(info['temp_path'])
		self.current_file_info = None
		self._skip(info['filename'], reason)

	def _remove_temp(self, temp_path:str):
		try:
			if os.path.exists(temp_path):
				os.unlink(temp_path)
		except OSError as e:
			self.print('Error removing temp file %s: %s' % (temp_path, e))
		if temp_path in self.temp_files:
			self.temp_files.remove(temp_path)

	def finalize(self):
		if self.state != 'done':
			raise ValueError('Unexpected end of multipart data')
		return self.completed_files

	def cleanup(self):
		"""Drops the part being written and any leftover temp file."""
		if self.current_file_handle is not None:
			try:
				self.current_file_handle.close()
			except OSError:
				pass
			self.current_file_handle = None
		self.current_file_info = None
		for temp_path in list(self.temp_files):
			self._remove_temp(temp_path)
