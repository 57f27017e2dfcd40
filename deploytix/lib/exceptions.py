class DeploytixError(Exception):
	pass


class NotRoot(DeploytixError):
	def __init__(self) -> None:
		super().__init__('Deploytix must be run as root')


class DeviceNotFound(DeploytixError):
	def __init__(self, device: str) -> None:
		super().__init__(f'Device not found: {device}')
		self.device = device


class NotBlockDevice(DeploytixError):
	def __init__(self, device: str) -> None:
		super().__init__(f'Not a block device: {device}')
		self.device = device


class DeviceMounted(DeploytixError):
	def __init__(self, device: str) -> None:
		super().__init__(f'Device is mounted: {device}')
		self.device = device


class DiskTooSmall(DeploytixError):
	def __init__(self, size_mib: int, required_mib: int) -> None:
		super().__init__(f'Disk too small: {size_mib}MiB < required minimum {required_mib}MiB')
		self.size_mib = size_mib
		self.required_mib = required_mib


class ConfigError(DeploytixError):
	pass


class ValidationError(DeploytixError):
	pass


class PartitionError(DeploytixError):
	pass


class FilesystemError(DeploytixError):
	pass


class MountError(DeploytixError):
	pass


class ChrootError(DeploytixError):
	pass


class CommandNotFound(DeploytixError):
	def __init__(self, program: str) -> None:
		super().__init__(f'Command not found: {program}')
		self.program = program


class RequirementError(CommandNotFound):
	pass


class CommandFailed(DeploytixError):
	def __init__(self, command: str, stderr: str = '', exit_code: int | None = None) -> None:
		super().__init__(f'Command failed: {command}: {stderr.strip()}')
		self.command = command
		self.stderr = stderr
		self.exit_code = exit_code


class UserCancelled(DeploytixError):
	def __init__(self) -> None:
		super().__init__('Operation cancelled by user')


class Interrupted(DeploytixError):
	"""
	Raised by the command runner when an interrupt signal has been received
	and a new side-effecting command was about to be issued.
	"""

	def __init__(self, signum: int | None = None) -> None:
		super().__init__('Installation interrupted')
		self.signum = signum
