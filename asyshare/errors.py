
class ShareError(Exception):
	"""Base class for every failure the server reports to a caller."""
	status_code = 500
	default_message = 'Internal Server Error'

	def __init__(self, message = None, status_code = None):
		if message is None:
			message = self.default_message
		self.message = message
		if status_code is not None:
			self.status_code = status_code
		super().__init__(self.message)


class ValidationError(ShareError):
	status_code = 400
	default_message = 'Invalid request'

class EmptyDirectory(ValidationError):
	default_message = 'Please select a directory to serve!'

class DirectoryNotFound(ValidationError):
	default_message = 'Directory does not exist or cannot be accessed!'

class NotADirectory(ValidationError):
	default_message = 'The selected path is not a directory!'

class InvalidAddress(ValidationError):
	default_message = 'Invalid listen address!'

class InvalidPort(ValidationError):
	default_message = 'Port must be a number between 1 and 65535!'

class InvalidName(ValidationError):
	default_message = 'Invalid name'

class InvalidTargetDirectory(ValidationError):
	default_message = 'Invalid target directory'

class InvalidRequest(ValidationError):
	default_message = 'Invalid request'


class LifecycleError(ShareError):
	status_code = 409
	default_message = 'Invalid server state'

class AlreadyRunning(LifecycleError):
	default_message = 'Server is already running!'

class NotRunning(LifecycleError):
	default_message = 'Server is not running!'


class ConflictError(ShareError):
	status_code = 409
	default_message = 'Conflict'

class NotFoundError(ShareError):
	status_code = 404
	default_message = 'Not Found'

class PayloadTooLarge(ShareError):
	status_code = 413
	default_message = 'Request entity too large'

class BindError(ShareError):
	status_code = 500
	default_message = 'Cannot listen on the requested address'

	def __init__(self, address, port, innerexception):
		self.innerexception = innerexception
		message = 'Port %s is already in use or cannot be listened on (%s:%s): %s\n\nPlease try another port or check your firewall settings.' % (port, address, port, innerexception)
		super().__init__(message)
