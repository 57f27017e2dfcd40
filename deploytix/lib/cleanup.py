from __future__ import annotations

import os
import signal
import time
from pathlib import Path

from .disk.lvm import deactivate_vg
from .disk.utils import unmount_all
from .exceptions import CommandFailed, ConfigError, DeploytixError
from .general import CommandRunner
from .output import debug, info, log_dry_run, warn

MAPPER_DIR = Path('/dev/mapper')
MAPPER_PREFIXES = ('Crypt-', 'temporary-cryptsetup-')

TERM_GRACE_SECONDS = 0.5


def _is_orphaned_cryptsetup(proc_dir: Path) -> bool:
	try:
		cmdline = (proc_dir / 'cmdline').read_bytes()
		stat = (proc_dir / 'stat').read_text()
	except OSError:
		return False

	if not (cmdline.startswith(b'cryptsetup\0') or cmdline.startswith(b'cryptsetup ')):
		return False

	# the command name in stat may itself contain spaces or parentheses
	fields = stat[stat.rfind(')') + 1 :].split()
	return len(fields) >= 2 and fields[1] == '1'


def find_orphaned_cryptsetup(proc: Path = Path('/proc')) -> list[int]:
	pids = []

	try:
		entries = list(proc.iterdir())
	except OSError as err:
		warn(f'Could not list {proc}: {err}')
		return pids

	for entry in entries:
		if entry.name.isdigit() and _is_orphaned_cryptsetup(entry):
			pids.append(int(entry.name))

	return sorted(pids)


def kill_orphaned_cryptsetup(runner: CommandRunner, proc: Path = Path('/proc')) -> None:
	"""
	An interrupted luksFormat leaves its cryptsetup child behind, re-parented
	to init and still holding a dm mapping open. Those processes are asked to
	terminate and killed if they are still around after a short grace period.
	"""
	for pid in find_orphaned_cryptsetup(proc):
		info(f'Killing orphaned cryptsetup process (PID {pid})')

		if runner.is_dry_run():
			log_dry_run(f'kill {pid}')
			continue

		try:
			os.kill(pid, signal.SIGTERM)
		except ProcessLookupError:
			continue

		time.sleep(TERM_GRACE_SECONDS)

		if (proc / str(pid)).exists():
			warn(f'SIGTERM failed, sending SIGKILL to PID {pid}')

			try:
				os.kill(pid, signal.SIGKILL)
			except ProcessLookupError:
				pass


def list_mapper_entries(mapper_dir: Path = MAPPER_DIR) -> list[str]:
	try:
		names = [entry.name for entry in mapper_dir.iterdir() if entry.name.startswith(MAPPER_PREFIXES)]
	except OSError as err:
		debug(f'Could not list {mapper_dir}: {err}')
		return []

	# Crypt-Usr, Crypt-Root, Crypt-Boot: nested volumes go before the root
	return sorted(names, reverse=True)


def close_mapper_entries(runner: CommandRunner, mapper_dir: Path = MAPPER_DIR) -> None:
	for name in list_mapper_entries(mapper_dir):
		info(f'Closing {name}')

		try:
			runner.force_run('cryptsetup', ['close', name])
		except CommandFailed as err:
			warn(f'Could not close {name}: {err}')


def emergency_cleanup(
	runner: CommandRunner,
	install_root: Path,
	vg_name: str | None = None,
	proc: Path = Path('/proc'),
	mapper_dir: Path = MAPPER_DIR,
) -> None:
	"""
	Releases whatever a failed or interrupted installation left behind.
	Every step is best-effort: errors are logged and the next step runs.
	"""
	warn('Running emergency cleanup')

	try:
		unmount_all(runner, install_root, proc / 'mounts')
	except DeploytixError as err:
		warn(f'Unmounting {install_root} failed: {err}')

	if vg_name:
		try:
			deactivate_vg(runner, vg_name)
		except DeploytixError as err:
			warn(f'Could not deactivate volume group {vg_name}: {err}')

	kill_orphaned_cryptsetup(runner, proc)
	close_mapper_entries(runner, mapper_dir)

	info('Emergency cleanup finished')


class Cleaner:
	"""
	Releases the resources of a previous installation on request of the
	user: mounts under the installation root, open LUKS mappings and,
	optionally, the partition table of the target device.
	"""

	def __init__(self, runner: CommandRunner, install_root: Path = Path('/install')) -> None:
		self.runner = runner
		self.install_root = install_root

	def cleanup(self, device: str | None = None, wipe: bool = False) -> None:
		info(f'Starting cleanup (unmount, close LUKS{", wipe" if wipe else ""})')

		info(f'Unmounting all filesystems under {self.install_root}')
		unmount_all(self.runner, self.install_root)

		info('Closing any open LUKS encrypted volumes')
		kill_orphaned_cryptsetup(self.runner)
		close_mapper_entries(self.runner)

		if wipe:
			if not device:
				raise ConfigError('A device is required to wipe, use --device')

			self.wipe_device(device)

		info('Cleanup complete')

	def wipe_device(self, device: str) -> None:
		warn(f'Wiping the partition table of {device}')

		self.runner.run('wipefs', ['-a', device])
		self.runner.run('sgdisk', ['--zap-all', device])
