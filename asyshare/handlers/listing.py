import os
import html
import posixpath
import urllib.parse
from typing import List

SIZE_UNITS = 'KMGTPE'

def format_size(size:int) -> str:
	"""1023 -> '1023 B', 1536 -> '1.5 KB', 1048576 -> '1.0 MB'"""
	unit = 1024
	if size < unit:
		return '%d B' % size
	div, exp = unit, 0
	n = size // unit
	while n >= unit:
		div *= unit
		exp += 1
		n //= unit
	return '%.1f %sB' % (size / div, SIZE_UNITS[exp])


class DirectoryEntry:
	def __init__(self, name:str, is_directory:bool, size_bytes:int = None):
		self.name = name
		self.is_directory = is_directory
		self.size_bytes = size_bytes

	def sort_key(self):
		return (0 if self.is_directory else 1, self.name)

	def get_size_str(self):
		if self.is_directory or self.size_bytes is None:
			return '-'
		return format_size(self.size_bytes)

	def __eq__(self, other):
		if not isinstance(other, DirectoryEntry):
			return NotImplemented
		return (self.name, self.is_directory, self.size_bytes) == (other.name, other.is_directory, other.size_bytes)

	def __repr__(self):
		return str(self.__dict__)


def sort_entries(entries:List[DirectoryEntry]) -> List[DirectoryEntry]:
	"""Directories first, then files, each group by name in code point order."""
	return sorted(entries, key=DirectoryEntry.sort_key)

def read_directory(dir_path:str) -> List[DirectoryEntry]:
	"""Fresh, sorted snapshot of a directory. Raises OSError if it cannot be read."""
	entries = []
	with os.scandir(dir_path) as it:
		for item in it:
			try:
				is_dir = item.is_dir()
			except OSError:
				is_dir = False
			size = None
			if not is_dir:
				try:
					size = item.stat().st_size
				except OSError:
					# dangling symlink or vanished meanwhile
					size = None
			entries.append(DirectoryEntry(item.name, is_dir, size))
	return sort_entries(entries)

def parent_url(request_path:str) -> str:
	"""Parent of the request path, None at the root."""
	stripped = request_path.rstrip('/')
	if stripped == '':
		return None
	parent = posixpath.dirname(stripped)
	if not parent.startswith('/'):
		parent = '/' + parent
	if parent != '/':
		parent += '/'
	return parent

def entry_url(request_path:str, entry:DirectoryEntry) -> str:
	base = request_path if request_path.endswith('/') else request_path + '/'
	url = urllib.parse.quote(base + entry.name)
	if entry.is_directory:
		url += '/'
	return url


LISTING_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Index of {title}</title>
<style>
body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; padding: 20px; line-height: 1.5; color: #333; }}
h1 {{ margin-bottom: 20px; border-bottom: 1px solid #eaeaea; padding-bottom: 10px; font-size: 24px; }}
ul {{ list-style: none; padding: 0; }}
li {{ padding: 8px 0; border-bottom: 1px solid #f0f0f0; display: flex; align-items: center; }}
li a {{ text-decoration: none; color: #007bff; flex-grow: 1; margin-left: 10px; }}
.size {{ color: #888; font-size: 0.9em; min-width: 80px; text-align: right; }}
.actions {{ margin-top: 20px; display: flex; gap: 10px; flex-wrap: wrap; }}
</style>
</head>
<body>
<h1>Index of {title}</h1>
<ul>
{rows}
</ul>
<div class="actions">
<form method="POST" enctype="multipart/form-data" action="{action}">
<input type="file" name="files" multiple required>
<button type="submit">Upload</button>
</form>
<button onclick="createEntry('createFolder')">New folder</button>
<button onclick="createEntry('createFile')">New file</button>
</div>
<script>
function createEntry(action) {{
	var name = prompt(action === 'createFolder' ? 'Folder name:' : 'File name:');
	if (!name) {{ return; }}
	fetch(window.location.pathname, {{
		method: 'POST',
		headers: {{'Content-Type': 'application/json'}},
		body: JSON.stringify({{action: action, name: name}})
	}}).then(function(response) {{
		if (response.ok) {{ location.reload(); }}
		else {{ response.text().then(function(text) {{ alert(text); }}); }}
	}}).catch(function(err) {{ alert('Error: ' + err); }});
}}
</script>
</body>
</html>
'''

ROW_TEMPLATE = '<li><span class="icon">{icon}</span><a href="{href}">{name}</a><span class="size">{size}</span></li>'

def render_listing(entries:List[DirectoryEntry], request_path:str) -> str:
	rows = []
	parent = parent_url(request_path)
	if parent is not None:
		rows.append(ROW_TEMPLATE.format(icon='&#128193;', href=urllib.parse.quote(parent), name='..', size=''))

	for entry in entries:
		display_name = entry.name + '/' if entry.is_directory else entry.name
		rows.append(ROW_TEMPLATE.format(
			icon = '&#128193;' if entry.is_directory else '&#128196;',
			href = html.escape(entry_url(request_path, entry), quote=True),
			name = html.escape(display_name),
			size = entry.get_size_str(),
		))

	return LISTING_TEMPLATE.format(
		title = html.escape(request_path),
		rows = '\n'.join(rows),
		action = html.escape(urllib.parse.quote(request_path), quote=True),
	)
