from __future__ import annotations

from pathlib import Path

from ..disk.formatting import mount_targets
from ..disk.utils import get_partition_uuid
from ..disk.volumes import VolumeSet
from ..general import CommandRunner, write_file
from ..models.device import FilesystemType, SwapType
from ..output import info
from .swap import SWAP_FILE_PATH

HEADER = '# /etc/fstab: static file system information\n# <file system> <dir> <type> <options> <dump> <pass>\n'


def _source(runner: CommandRunner, device: str) -> str:
	# in dry-run nothing is formatted, fall back to the device path
	if uuid := get_partition_uuid(runner, device):
		return f'UUID={uuid}'
	return device


def _fsck_pass(fs_type: FilesystemType, mount_point: str) -> int:
	match fs_type:
		case FilesystemType.Btrfs | FilesystemType.Xfs:
			return 0
		case _:
			return 1 if mount_point == '/' else 2


def _line(source: str, mount_point: str, fs: str, options: str, fsck_pass: int) -> str:
	return f'{source}\t{mount_point}\t{fs}\t{options}\t0 {fsck_pass}'


def generate_fstab(
	runner: CommandRunner,
	volumes: VolumeSet,
	fs_type: FilesystemType,
	swap_type: SwapType,
) -> str:
	lines = [HEADER]

	for target in mount_targets(volumes):
		target_fs = FilesystemType.Btrfs if target.options and 'subvol=' in target.options else fs_type
		lines.append(
			_line(
				_source(runner, target.source),
				target.mount_point,
				target_fs.value,
				target.options or 'defaults',
				_fsck_pass(target_fs, target.mount_point),
			)
		)

	lines.append(_line(_source(runner, volumes.boot.device_path), '/boot', fs_type.value, 'defaults', _fsck_pass(fs_type, '/boot')))
	lines.append(_line(_source(runner, volumes.efi), '/boot/efi', FilesystemType.Vfat.value, 'umask=0077', 2))

	if volumes.swap:
		lines.append(_line(_source(runner, volumes.swap), 'none', 'swap', 'defaults', 0))

	if swap_type == SwapType.FileZram:
		lines.append(_line(SWAP_FILE_PATH, 'none', 'swap', 'defaults', 0))

	return '\n'.join(lines) + '\n'


def write_fstab(
	runner: CommandRunner,
	volumes: VolumeSet,
	fs_type: FilesystemType,
	swap_type: SwapType,
	install_root: Path,
) -> None:
	fstab = generate_fstab(runner, volumes, fs_type, swap_type)
	info('Writing /etc/fstab')
	write_file(runner, install_root / 'etc/fstab', fstab)
