from __future__ import annotations

import os
import stat
import subprocess
from pathlib import Path

from pydantic import BaseModel

from ..exceptions import CommandFailed, DeviceMounted, DeviceNotFound, NotBlockDevice, PartitionError
from ..general import CommandRunner, run
from ..models.device import LsblkInfo
from ..output import debug, warn

_SEPARATED_DEVICE_NAMES = ('nvme', 'mmcblk', 'loop')
_HIDDEN_DEVICE_TYPES = ('loop', 'rom')


class LsblkOutput(BaseModel):
	blockdevices: list[LsblkInfo]


def partition_path(device: str, number: int) -> str:
	"""
	/dev/sda + 2 -> /dev/sda2, /dev/nvme0n1 + 2 -> /dev/nvme0n1p2
	"""
	if any(name in device for name in _SEPARATED_DEVICE_NAMES):
		return f'{device}p{number}'
	return f'{device}{number}'


def _fetch_lsblk_info(dev_path: Path | str | None = None) -> LsblkOutput:
	cmd = ['lsblk', '--json', '--bytes', '--output', ','.join(LsblkInfo.fields())]

	if dev_path:
		cmd.append(str(dev_path))

	try:
		result = run(cmd)
	except FileNotFoundError as err:
		raise PartitionError('lsblk is not available on this system') from err
	except subprocess.CalledProcessError as err:
		if err.stderr:
			debug(f'Error calling lsblk: {err.stderr.decode(errors="backslashreplace")}')

		if dev_path:
			raise PartitionError(f'Failed to read disk "{dev_path}" with lsblk') from err

		raise CommandFailed(' '.join(cmd), (err.stderr or b'').decode(errors='backslashreplace'), err.returncode) from err

	return LsblkOutput.model_validate_json(result.stdout)


def get_lsblk_info(dev_path: Path | str) -> LsblkInfo:
	infos = _fetch_lsblk_info(dev_path)

	if infos.blockdevices:
		return infos.blockdevices[0]

	raise PartitionError(f'lsblk failed to retrieve information for "{dev_path}"')


def get_all_lsblk_info() -> list[LsblkInfo]:
	return _fetch_lsblk_info().blockdevices


def get_device_info(device: str) -> LsblkInfo:
	"""
	Checks that the target device can be used for an installation and
	returns what lsblk knows about it.
	"""
	path = Path(device)

	if not path.exists():
		raise DeviceNotFound(device)

	if not stat.S_ISBLK(os.stat(path).st_mode):
		raise NotBlockDevice(device)

	lsblk_info = get_lsblk_info(path)

	if lsblk_info.is_mounted():
		raise DeviceMounted(device)

	return lsblk_info


def list_block_devices(include_all: bool = False) -> list[LsblkInfo]:
	devices = []

	for lsblk_info in get_all_lsblk_info():
		if not include_all:
			if lsblk_info.type in _HIDDEN_DEVICE_TYPES:
				continue

			# the live medium is mounted, an installation target never is
			if lsblk_info.is_mounted():
				continue

		devices.append(lsblk_info)

	return devices


def read_mount_points(root: Path | str, mounts_path: Path = Path('/proc/mounts')) -> list[str]:
	"""
	Returns every mount point at or below root, deepest first.
	"""
	root = str(root).rstrip('/') or '/'
	mount_points: list[str] = []

	try:
		content = mounts_path.read_text()
	except OSError as err:
		warn(f'Could not read {mounts_path}: {err}')
		return mount_points

	for line in content.splitlines():
		fields = line.split()
		if len(fields) < 2:
			continue

		# /proc/mounts escapes spaces as \040
		target = fields[1].replace('\\040', ' ')

		if target == root or target.startswith(f'{root}/'):
			mount_points.append(target)

	return sorted(mount_points, key=lambda m: m.count('/'), reverse=True)


def unmount_all(runner: CommandRunner, root: Path | str, mounts_path: Path = Path('/proc/mounts')) -> None:
	try:
		runner.force_run('swapoff', ['-a'])
	except CommandFailed as err:
		debug(f'swapoff failed: {err}')

	if runner.is_dry_run():
		runner.force_run('umount', ['-R', str(root)])
		return

	for mount_point in read_mount_points(root, mounts_path):
		try:
			runner.force_run('umount', [mount_point])
		except CommandFailed:
			debug(f'Regular unmount of {mount_point} failed, trying lazy unmount')

			try:
				runner.force_run('umount', ['-l', mount_point])
			except CommandFailed as err:
				warn(f'Could not unmount {mount_point}: {err}')


def udev_sync(runner: CommandRunner) -> None:
	try:
		runner.force_run('udevadm', ['settle'])
	except CommandFailed as err:
		debug(f'Failed to synchronize with udev: {err}')


def get_partition_uuid(runner: CommandRunner, device: str) -> str:
	"""
	Returns the filesystem UUID of device, or an empty string in dry-run
	mode where nothing has been formatted.
	"""
	try:
		return runner.force_run('blkid', ['-s', 'UUID', '-o', 'value', device]).decode()
	except CommandFailed as err:
		raise PartitionError(f'Could not read UUID of {device}: {err.stderr.strip()}') from err
