from __future__ import annotations

import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from ..disk.luks import get_luks_uuid, keyfile_path
from ..disk.utils import get_partition_uuid
from ..disk.volumes import VolumeSet
from ..exceptions import ConfigError
from ..general import CommandRunner, write_file
from ..models.system import Bootloader
from ..models.users import User
from ..output import info
from .mkinitcpio import root_volume_path, uses_custom_hooks
from .services import enable_services

if TYPE_CHECKING:
	from ..args import DeploymentConfig


def set_timezone(runner: CommandRunner, timezone: str, install_root: Path) -> None:
	info(f'Setting timezone to {timezone}')
	zoneinfo = shlex.quote(f'/usr/share/zoneinfo/{timezone}')
	runner.run_in_chroot(install_root, f'ln -sf {zoneinfo} /etc/localtime')
	runner.run_in_chroot(install_root, 'hwclock --systohc')


def set_locale(runner: CommandRunner, locale: str, install_root: Path) -> None:
	info(f'Setting locale to {locale}')

	charset = locale.split('.', 1)[1] if '.' in locale else 'UTF-8'
	write_file(runner, install_root / 'etc/locale.gen', f'{locale} {charset}\n')
	write_file(runner, install_root / 'etc/locale.conf', f'LANG={locale}\n')

	runner.run_in_chroot(install_root, 'locale-gen')


def set_keymap(runner: CommandRunner, keymap: str, install_root: Path) -> None:
	write_file(runner, install_root / 'etc/vconsole.conf', f'KEYMAP={keymap}\n')
	# OpenRC reads the console keymap from its own configuration
	write_file(runner, install_root / 'etc/conf.d/keymaps', f'keymap="{keymap}"\n')


def set_hostname(runner: CommandRunner, hostname: str, install_root: Path) -> None:
	info(f'Setting hostname to {hostname}')
	write_file(runner, install_root / 'etc/hostname', f'{hostname}\n')
	write_file(
		runner,
		install_root / 'etc/hosts',
		f'127.0.0.1\tlocalhost\n::1\t\tlocalhost\n127.0.1.1\t{hostname}.localdomain\t{hostname}\n',
	)


def create_user(runner: CommandRunner, user: User, install_root: Path) -> None:
	info(f'Creating user {user.name}')

	groups = ','.join(user.groups)
	group_arg = f'-G {shlex.quote(groups)} ' if groups else ''
	runner.run_in_chroot(install_root, f'useradd -m {group_arg}-s /bin/bash {shlex.quote(user.name)}')

	# the password never appears on a command line
	runner.run_in_chroot(install_root, 'chpasswd', input_data=f'{user.name}:{user.password}\n'.encode())

	if user.sudoer:
		write_file(runner, install_root / 'etc/sudoers.d/10-wheel', '%wheel ALL=(ALL:ALL) ALL\n', mode=0o440)


def kernel_cmdline(runner: CommandRunner, config: DeploymentConfig, volumes: VolumeSet) -> list[str]:
	disk = config.disk
	cmdline = ['quiet']

	root_device = root_volume_path(volumes)
	if root_device is None:
		raise ConfigError('No root volume to boot from')

	if disk.uses_lvm_thin and volumes.pv_container is not None:
		pv = volumes.pv_container
		pv_uuid = get_luks_uuid(runner, pv.device)
		pv_source = f'UUID={pv_uuid}' if pv_uuid else pv.device
		cmdline += [f'cryptdevice={pv_source}:{pv.mapper_name}', f'root={root_device}']

		if disk.boot_encryption:
			cmdline.append(f'cryptkey=rootfs:{keyfile_path(pv.volume_name)}')
	elif uses_custom_hooks(config):
		# mountcrypt mounts the root volume, the kernel only needs to know where it is
		cmdline.append(f'root={root_device}')
	else:
		root_uuid = get_partition_uuid(runner, root_device)
		cmdline.append(f'root=UUID={root_uuid}' if root_uuid else f'root={root_device}')

	if volumes.subvolumes:
		cmdline.append('rootflags=subvol=@')

	if config.system.hibernation and volumes.swap:
		swap_uuid = get_partition_uuid(runner, volumes.swap)
		cmdline.append(f'resume=UUID={swap_uuid}' if swap_uuid else f'resume={volumes.swap}')

	cmdline.append('rw')
	return cmdline


def install_grub(runner: CommandRunner, config: DeploymentConfig, volumes: VolumeSet, install_root: Path) -> None:
	info('Installing GRUB')

	cmdline = ' '.join(kernel_cmdline(runner, config, volumes))
	defaults = (
		'# GRUB boot loader configuration, generated by deploytix\n\n'
		'GRUB_DEFAULT=0\n'
		'GRUB_TIMEOUT=5\n'
		'GRUB_DISTRIBUTOR="Artix"\n'
		f'GRUB_CMDLINE_LINUX_DEFAULT="{cmdline}"\n'
	)

	if config.disk.boot_encryption:
		defaults += 'GRUB_ENABLE_CRYPTODISK=y\n'

	write_file(runner, install_root / 'etc/default/grub', defaults)

	runner.run_in_chroot(
		install_root,
		'grub-install --target=x86_64-efi --boot-directory=/boot --efi-directory=/boot/efi --removable',
	)
	runner.run_in_chroot(install_root, 'grub-mkconfig -o /boot/grub/grub.cfg')


def install_systemd_boot(runner: CommandRunner, config: DeploymentConfig, volumes: VolumeSet, install_root: Path) -> None:
	info('Installing systemd-boot')

	if config.disk.boot_encryption:
		raise ConfigError('systemd-boot cannot read an encrypted /boot, use GRUB instead')

	cmdline = ' '.join(kernel_cmdline(runner, config, volumes))

	runner.run_in_chroot(install_root, 'bootctl install')

	write_file(runner, install_root / 'boot/efi/loader/loader.conf', 'default artix.conf\ntimeout 3\n')
	write_file(
		runner,
		install_root / 'boot/efi/loader/entries/artix.conf',
		'title   Artix Linux\n'
		'linux   /vmlinuz-linux-zen\n'
		'initrd  /initramfs-linux-zen.img\n'
		f'options {cmdline}\n',
	)


def install_bootloader(runner: CommandRunner, config: DeploymentConfig, volumes: VolumeSet, install_root: Path) -> None:
	match config.system.bootloader:
		case Bootloader.Grub:
			install_grub(runner, config, volumes, install_root)
		case Bootloader.SystemdBoot:
			install_systemd_boot(runner, config, volumes, install_root)
		case _:
			raise ConfigError(f'Unsupported bootloader: {config.system.bootloader}')


def configure_system(runner: CommandRunner, config: DeploymentConfig, volumes: VolumeSet, install_root: Path) -> None:
	system = config.system

	set_timezone(runner, system.timezone, install_root)
	set_locale(runner, system.locale, install_root)
	set_keymap(runner, system.keymap, install_root)
	set_hostname(runner, system.hostname, install_root)
	create_user(runner, config.user, install_root)
	install_bootloader(runner, config, volumes, install_root)
	enable_services(runner, config, install_root)
