from __future__ import annotations

from pathlib import Path

from ..exceptions import CommandFailed
from ..general import CommandRunner, write_file
from ..hardware import SysInfo
from ..models.device import DiskConfiguration, FilesystemType, SwapType
from ..models.system import InitSystem
from ..output import debug, info, log_dry_run
from .services import enable_service

SWAP_FILE_PATH = '/swap/swapfile'
SWAP_FILE_MAX_MIB = 16384

ZRAM_SETUP_PATH = '/usr/local/bin/zram-setup'

_ZRAM_SETUP = """#!/bin/sh
RAM_KB=$(grep MemTotal /proc/meminfo | awk '{{print $2}}')
ZRAM_SIZE=$((RAM_KB * {percent} / 100 * 1024))

modprobe zram num_devices=1
echo {algorithm} > /sys/block/zram0/comp_algorithm
echo $ZRAM_SIZE > /sys/block/zram0/disksize
mkswap /dev/zram0
swapon -p 100 /dev/zram0
"""

_ZRAM_STOP = """swapoff /dev/zram0 2>/dev/null
echo 1 > /sys/block/zram0/reset 2>/dev/null
"""

_OPENRC_ZRAM = """#!/sbin/openrc-run

description="ZRAM swap device"

depend() {{
	need localmount
	before swap
}}

start() {{
	ebegin "Starting ZRAM swap"
	{setup}
	eend $?
}}

stop() {{
	ebegin "Stopping ZRAM swap"
	swapoff /dev/zram0 2>/dev/null
	echo 1 > /sys/block/zram0/reset 2>/dev/null
	eend $?
}}
"""


def swap_file_size_mib(config: DiskConfiguration, ram_mib: int | None = None) -> int:
	if config.swap_file_size_mib > 0:
		return config.swap_file_size_mib

	if ram_mib is None:
		ram_mib = SysInfo.ram_mib()

	return min(2 * ram_mib, SWAP_FILE_MAX_MIB)


def _zram_service_files(init: InitSystem) -> dict[str, tuple[str, int]]:
	"""
	Returns the service definition files for the zram service of the
	given init system, as {path: (content, mode)}.
	"""
	match init:
		case InitSystem.Runit:
			return {
				'/etc/runit/sv/zram/run': (f'#!/bin/sh\nexec 2>&1\n{ZRAM_SETUP_PATH}\nexec pause\n', 0o755),
				'/etc/runit/sv/zram/finish': (f'#!/bin/sh\n{_ZRAM_STOP}', 0o755),
			}
		case InitSystem.OpenRC:
			return {'/etc/init.d/zram': (_OPENRC_ZRAM.format(setup=ZRAM_SETUP_PATH), 0o755)}
		case InitSystem.S6:
			return {
				'/etc/s6/sv/zram/up': (f'{ZRAM_SETUP_PATH}\n', 0o644),
				'/etc/s6/sv/zram/type': ('oneshot\n', 0o644),
			}
		case InitSystem.Dinit:
			return {'/etc/dinit.d/zram': (f'type = scripted\ncommand = {ZRAM_SETUP_PATH}\ndepends-on = mount.local\n', 0o644)}


def setup_zram(runner: CommandRunner, config: DiskConfiguration, init: InitSystem, install_root: Path) -> None:
	info(f'Setting up ZRAM with {config.zram_percent}% of RAM, compression: {config.zram_algorithm}')

	setup_script = _ZRAM_SETUP.format(percent=config.zram_percent, algorithm=config.zram_algorithm)
	write_file(runner, install_root / ZRAM_SETUP_PATH.lstrip('/'), setup_script, mode=0o755)

	for path, (content, mode) in _zram_service_files(init).items():
		write_file(runner, install_root / path.lstrip('/'), content, mode=mode)

	enable_service(runner, init, 'zram', install_root)


def create_swap_file(
	runner: CommandRunner,
	config: DiskConfiguration,
	install_root: Path,
	ram_mib: int | None = None,
) -> None:
	size_mib = swap_file_size_mib(config, ram_mib)
	swap_file = install_root / SWAP_FILE_PATH.lstrip('/')

	info(f'Creating {size_mib} MiB swap file at {SWAP_FILE_PATH}')

	if runner.is_dry_run():
		log_dry_run(f'mkdir -p {swap_file.parent}')
	else:
		swap_file.parent.mkdir(parents=True, exist_ok=True)

	if config.filesystem == FilesystemType.Btrfs:
		try:
			runner.run('btrfs', ['filesystem', 'mkswapfile', '--size', f'{size_mib}m', str(swap_file)])
			return
		except CommandFailed as err:
			# older btrfs-progs lack mkswapfile, a NOCOW file works as well
			debug(f'btrfs mkswapfile failed, falling back to fallocate: {err}')
			runner.run('touch', [str(swap_file)])
			runner.run('chattr', ['+C', str(swap_file)])

	runner.run('fallocate', ['-l', f'{size_mib}M', str(swap_file)])
	runner.run('chmod', ['600', str(swap_file)])
	runner.run('mkswap', [str(swap_file)])


def configure_swap(
	runner: CommandRunner,
	config: DiskConfiguration,
	init: InitSystem,
	install_root: Path,
	ram_mib: int | None = None,
) -> None:
	match config.swap_type:
		case SwapType.Partition:
			debug('Swap lives on its own partition, nothing to configure')
		case SwapType.FileZram:
			create_swap_file(runner, config, install_root, ram_mib)
			setup_zram(runner, config, init, install_root)
		case SwapType.ZramOnly:
			setup_zram(runner, config, init, install_root)
