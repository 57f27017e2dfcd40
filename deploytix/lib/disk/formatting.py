from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..exceptions import CommandFailed, FilesystemError, MountError
from ..general import CommandRunner
from ..models.device import FilesystemType, SubvolumeDef
from ..output import debug, info, log_dry_run
from .volumes import VolumeSet


def format_device(runner: CommandRunner, device: str, fs_type: FilesystemType, label: str | None = None) -> None:
	match fs_type:
		case FilesystemType.Vfat:
			program = 'mkfs.vfat'
			args = ['-F32']
			if label:
				args += ['-n', label]
		case FilesystemType.LinuxSwap:
			program = 'mkswap'
			args = ['-L', label] if label else []
		case FilesystemType.Ext4:
			program = 'mkfs.ext4'
			args = ['-F']
			if label:
				args += ['-L', label]
		case FilesystemType.F2fs:
			program = 'mkfs.f2fs'
			args = ['-f']
			if label:
				args += ['-l', label]
		case FilesystemType.Btrfs | FilesystemType.Xfs:
			program = f'mkfs.{fs_type.value}'
			args = ['-f']
			if label:
				args += ['-L', label]
		case _:
			raise FilesystemError(f'Unsupported filesystem type: {fs_type}')

	info(f'Formatting {device} as {fs_type.value}' + (f' ({label})' if label else ''))

	try:
		runner.run(program, [*args, device])
	except CommandFailed as err:
		raise FilesystemError(f'Could not format {device} with {program}: {err.stderr.strip()}') from err


def format_volume_set(runner: CommandRunner, volumes: VolumeSet, fs_type: FilesystemType) -> None:
	format_device(runner, volumes.efi, FilesystemType.Vfat, 'EFI')
	format_device(runner, volumes.boot.device_path, fs_type, 'BOOT')

	if volumes.swap:
		format_device(runner, volumes.swap, FilesystemType.LinuxSwap, 'SWAP')

	if volumes.subvolume_host is not None:
		format_device(runner, volumes.subvolume_host.device_path, FilesystemType.Btrfs, volumes.subvolume_host.name.upper())

	for entry in volumes.entries:
		format_device(runner, entry.device_path, fs_type, entry.name.upper())


def create_btrfs_subvolumes(runner: CommandRunner, device: str, subvolumes: list[SubvolumeDef], tmp_mount: Path) -> None:
	"""
	Creates the subvolumes at the top level of the btrfs filesystem on
	device, using tmp_mount as a temporary mount point.
	"""
	_mkdir(runner, tmp_mount)

	try:
		runner.run('mount', [device, str(tmp_mount)])
	except CommandFailed as err:
		raise MountError(f'Could not mount {device} to create subvolumes: {err.stderr.strip()}') from err

	try:
		for subvol in subvolumes:
			debug(f'Creating btrfs subvolume {subvol.name}')
			runner.run('btrfs', ['subvolume', 'create', str(tmp_mount / subvol.name)])
	except CommandFailed as err:
		raise FilesystemError(f'Could not create btrfs subvolume: {err.stderr.strip()}') from err
	finally:
		runner.force_run('umount', [str(tmp_mount)])


@dataclass
class MountTarget:
	source: str
	mount_point: str
	options: str | None = None

	@property
	def depth(self) -> int:
		return self.mount_point.count('/')


def _mkdir(runner: CommandRunner, path: Path) -> None:
	if runner.is_dry_run():
		log_dry_run(f'mkdir -p {path}')
		return

	path.mkdir(parents=True, exist_ok=True)


def _target_path(root: Path, mount_point: str) -> Path:
	return root / mount_point.lstrip('/')


def _mount(runner: CommandRunner, root: Path, target: MountTarget) -> None:
	path = _target_path(root, target.mount_point)
	_mkdir(runner, path)

	args = ['-o', target.options] if target.options else []

	try:
		runner.run('mount', [*args, target.source, str(path)])
	except CommandFailed as err:
		raise MountError(f'Could not mount {target.source} at {path}: {err.stderr.strip()}') from err


def mount_targets(volumes: VolumeSet) -> list[MountTarget]:
	"""
	Every data mount in mount order: parents before children, the
	subvolumes of the root volume interleaved with the dedicated volumes.
	"""
	targets: list[MountTarget] = []

	if volumes.subvolume_host is not None and volumes.subvolumes:
		for subvol in volumes.subvolumes:
			targets.append(
				MountTarget(
					volumes.subvolume_host.device_path,
					subvol.mount_point,
					f'subvol={subvol.name},{subvol.mount_options}',
				)
			)

	for entry in volumes.entries:
		targets.append(MountTarget(entry.device_path, entry.mount_point))

	# "/" has the same slash count as "/usr" but must always come first
	return sorted(targets, key=lambda t: (t.mount_point != '/', t.depth))


def mount_volume_set(runner: CommandRunner, volumes: VolumeSet, root: Path) -> None:
	info(f'Mounting volumes under {root}')

	for target in mount_targets(volumes):
		_mount(runner, root, target)

	_mount(runner, root, MountTarget(volumes.boot.device_path, '/boot'))
	_mount(runner, root, MountTarget(volumes.efi, '/boot/efi'))

	if volumes.swap:
		try:
			runner.run('swapon', [volumes.swap])
		except CommandFailed as err:
			raise MountError(f'Could not enable swap on {volumes.swap}: {err.stderr.strip()}') from err
