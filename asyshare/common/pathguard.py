import os
import ntpath
import posixpath

from asyshare.errors import InvalidName, InvalidRequest

FORBIDDEN_SEQUENCES = ['..', '/', '\\']

def is_safe_segment(segment:str) -> bool:
	"""
	Checks a single untrusted path component (file name, folder name, lookup ID).

	The segment must already be URL-decoded and must only ever be used as one
	path component, it is never split again by the callers.
	"""
	if not segment:
		return False
	if '\x00' in segment:
		return False
	for seq in FORBIDDEN_SEQUENCES:
		if seq in segment:
			return False
	return True

def check_segment(segment:str, error_cls = InvalidName):
	if not is_safe_segment(segment):
		raise error_cls()
	return segment

def base_name(filename:str) -> str:
	"""Strips every directory component, both / and \\ separated."""
	if not filename:
		return ''
	return ntpath.basename(posixpath.basename(filename))

def clean_url_path(url_path:str) -> str:
	"""
	Normalizes a decoded URL path into an absolute, slash separated path.
	'..' removes the previous component but never climbs above '/'.
	"""
	parts = []
	for component in url_path.replace('\\', '/').split('/'):
		if component in ['', '.']:
			continue
		if component == '..':
			if len(parts) > 0:
				parts.pop()
			continue
		parts.append(component)
	return '/' + '/'.join(parts)

def resolve_under_root(root:str, url_path:str) -> str:
	"""
	Maps a decoded URL path onto the filesystem below `root`.
	Raises InvalidRequest if the result would leave the root.
	"""
	if '\x00' in url_path:
		raise InvalidRequest('Invalid path')

	cleaned = clean_url_path(url_path)
	if cleaned == '/':
		return root

	safe_path = os.path.abspath(os.path.join(root, *cleaned[1:].split('/')))
	try:
		if os.path.commonpath([safe_path, root]) != root:
			raise InvalidRequest('Invalid path')
	except ValueError:
		# different drives on windows
		raise InvalidRequest('Invalid path')
	return safe_path
