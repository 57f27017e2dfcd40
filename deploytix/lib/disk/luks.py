from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import CommandFailed, ConfigError, PartitionError
from ..general import CommandRunner, write_file
from ..models.device import LuksContainer
from ..output import info, log_dry_run, warn

KEYFILE_DIR = Path('/etc/cryptsetup-keys.d')
KEYFILE_SIZE = 512

LUKS2_FORMAT_ARGS = [
	'--type',
	'luks2',
	'--cipher',
	'aes-xts-plain64',
	'--key-size',
	'512',
	'--hash',
	'sha512',
	'--pbkdf',
	'argon2id',
	'--batch-mode',
]

INTEGRITY_ARGS = ['--integrity', 'hmac-sha256', '--sector-size', '4096']

# GRUB can only unlock LUKS1 with pbkdf2
LUKS1_FORMAT_ARGS = [
	'--type',
	'luks1',
	'--cipher',
	'aes-xts-plain64',
	'--key-size',
	'512',
	'--hash',
	'sha512',
	'--pbkdf',
	'pbkdf2',
	'--batch-mode',
]


def _password_bytes(password: str) -> bytes:
	if not password:
		raise ConfigError('Encryption password required')

	return f'{password}\n'.encode()


def mapped_path_for(mapper_name: str) -> str:
	return f'/dev/mapper/{mapper_name}'


def mapper_name_for(volume_name: str, root_mapper_name: str | None = None) -> str:
	"""
	ROOT -> root_mapper_name (or Crypt-Root), USR -> Crypt-Usr, LVM -> Crypt-Lvm
	"""
	if root_mapper_name and volume_name.upper() == 'ROOT':
		return root_mapper_name

	return f'Crypt-{volume_name.lower().capitalize()}'


def luks_format(
	runner: CommandRunner,
	device: str,
	password: str,
	integrity: bool = False,
	luks1: bool = False,
) -> None:
	if luks1:
		args = list(LUKS1_FORMAT_ARGS)
		info(f'Formatting {device} as LUKS1 container (aes-xts-plain64, pbkdf2)')
	else:
		args = list(LUKS2_FORMAT_ARGS)

		if integrity:
			args += INTEGRITY_ARGS
			info(f'Formatting {device} as LUKS2 container with dm-integrity (aes-xts-plain64, argon2id, hmac-sha256)')
		else:
			info(f'Formatting {device} as LUKS2 container (aes-xts-plain64, argon2id)')

	try:
		runner.run('cryptsetup', ['luksFormat', *args, device], input_data=_password_bytes(password))
	except CommandFailed as err:
		raise PartitionError(f'Could not encrypt volume "{device}": {err.stderr.strip()}') from err


def luks_open(runner: CommandRunner, device: str, mapper_name: str, password: str) -> str:
	try:
		runner.run('cryptsetup', ['open', device, mapper_name], input_data=_password_bytes(password))
	except CommandFailed as err:
		raise PartitionError(f'Failed to open luks device {device}: {err.stderr.strip()}') from err

	return mapped_path_for(mapper_name)


def _setup_container(
	runner: CommandRunner,
	device: str,
	mapper_name: str,
	volume_name: str,
	password: str,
	integrity: bool = False,
	luks1: bool = False,
) -> LuksContainer:
	luks_format(runner, device, password, integrity=integrity, luks1=luks1)
	mapped_path = luks_open(runner, device, mapper_name, password)

	info(f'Encrypted {device} -> {mapped_path}')

	return LuksContainer(
		device=device,
		mapper_name=mapper_name,
		mapped_path=mapped_path,
		volume_name=volume_name,
	)


def setup_single_luks(
	runner: CommandRunner,
	device: str,
	password: str,
	mapper_name: str,
	volume_name: str,
	integrity: bool = False,
) -> LuksContainer:
	return _setup_container(runner, device, mapper_name, volume_name, password, integrity=integrity)


def setup_multi_volume_encryption(
	runner: CommandRunner,
	volumes: list[tuple[str, str]],
	password: str,
	root_mapper_name: str | None = None,
	integrity: bool = False,
) -> list[LuksContainer]:
	"""
	Creates and opens one LUKS2 container per (volume name, device) pair.
	"""
	containers = []

	for volume_name, device in volumes:
		mapper_name = mapper_name_for(volume_name, root_mapper_name)
		containers.append(_setup_container(runner, device, mapper_name, volume_name, password, integrity=integrity))

	info(f'Multi-volume encryption setup complete: {len(containers)} containers created')
	return containers


def setup_boot_encryption(runner: CommandRunner, device: str, mapper_name: str, password: str) -> LuksContainer:
	info(f'Setting up LUKS1 encryption on {device} for /boot (mapper: {mapper_name})')
	return _setup_container(runner, device, mapper_name, 'BOOT', password, luks1=True)


def close_luks(runner: CommandRunner, mapper_name: str) -> None:
	info(f'Closing LUKS container {mapper_name}')
	runner.force_run('cryptsetup', ['close', mapper_name])


def close_multi_luks(runner: CommandRunner, containers: list[LuksContainer]) -> None:
	for container in reversed(containers):
		try:
			close_luks(runner, container.mapper_name)
		except CommandFailed as err:
			warn(f'Could not close {container.mapper_name}: {err}')


def get_luks_uuid(runner: CommandRunner, device: str) -> str:
	try:
		return runner.force_run('cryptsetup', ['luksUUID', device]).decode()
	except CommandFailed as err:
		info(f'Unable to get UUID for Luks device: {device}')
		raise err


def keyfile_path(volume_name: str) -> Path:
	return KEYFILE_DIR / f'crypt{volume_name.lower()}.key'


@dataclass
class VolumeKeyfile:
	volume_name: str
	mapper_name: str
	device: str
	# None when the volume is unlocked with the password
	keyfile: Path | None = None


def generate_keyfile(runner: CommandRunner, target: Path) -> None:
	info(f'Generating keyfile: {target}')

	if runner.is_dry_run():
		log_dry_run(f'write {KEYFILE_SIZE} random bytes to {target} (mode 000)')
		return

	target.parent.mkdir(parents=True, exist_ok=True)
	target.parent.chmod(0o700)

	with target.open('wb') as keyfile:
		keyfile.write(os.urandom(KEYFILE_SIZE))

	target.chmod(0o000)


def add_keyfile(runner: CommandRunner, device: str, keyfile: Path, password: str) -> None:
	info(f'Adding keyfile {keyfile} to LUKS device {device}')

	try:
		runner.run('cryptsetup', ['luksAddKey', device, str(keyfile)], input_data=_password_bytes(password))
	except CommandFailed as err:
		raise PartitionError(f'Could not add keyfile to {device}: {err.stderr.strip()}') from err


def setup_keyfiles_for_volumes(
	runner: CommandRunner,
	containers: list[LuksContainer],
	password: str,
	install_root: Path,
) -> list[VolumeKeyfile]:
	"""
	Creates a keyfile inside the installed system for every container
	and enrolls it, so the initramfs and crypttab can unlock the volumes
	without asking for the password again.
	"""
	info(f'Setting up keyfiles for {len(containers)} encrypted volumes')

	keyfiles = []

	for container in containers:
		keyfile = keyfile_path(container.volume_name)
		host_path = install_root / keyfile.relative_to(keyfile.root)

		generate_keyfile(runner, host_path)
		add_keyfile(runner, container.device, host_path, password)

		keyfiles.append(VolumeKeyfile(container.volume_name, container.mapper_name, container.device, keyfile))

	return keyfiles


def password_entries(containers: list[LuksContainer]) -> list[VolumeKeyfile]:
	return [VolumeKeyfile(c.volume_name, c.mapper_name, c.device) for c in containers]


def generate_crypttab(runner: CommandRunner, keyfiles: list[VolumeKeyfile]) -> str:
	lines = ['# <name> <device> <password> <options>']

	for entry in keyfiles:
		uuid = get_luks_uuid(runner, entry.device)
		source = f'UUID={uuid}' if uuid else entry.device

		lines.append(f'{entry.mapper_name} {source} {entry.keyfile or "none"} luks')

	return '\n'.join(lines) + '\n'


def write_crypttab(runner: CommandRunner, install_root: Path, keyfiles: list[VolumeKeyfile]) -> None:
	crypttab = generate_crypttab(runner, keyfiles)
	write_file(runner, install_root / 'etc/crypttab', crypttab, mode=0o600)
