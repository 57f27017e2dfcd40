"""
mkinitcpio configuration.

The MODULES, HOOKS and FILES arrays are derived from the enabled storage
features rather than from the layout preset:

	encryption without LVM thin -> crypttab-unlock + mountcrypt (custom hooks)
	encryption with LVM thin    -> encrypt (single container holding the PV)
	LVM thin                    -> lvm2
	boot encryption             -> crypttab-unlock for the LUKS1 /boot container
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ..disk.luks import VolumeKeyfile
from ..disk.volumes import VolumeSet
from ..general import CommandRunner, write_file
from ..models.device import FilesystemType
from ..output import info

if TYPE_CHECKING:
	from ..args import DeploymentConfig

HOOKS_DIR = Path('/usr/lib/initcpio/hooks')
INSTALL_DIR = Path('/usr/lib/initcpio/install')

_CRYPTTAB_UNLOCK_HOOK = """#!/usr/bin/ash
# crypttab-unlock: unlock every LUKS device listed in /etc/crypttab

run_hook() {
	local crypttab="/etc/crypttab"

	if [ ! -f "$crypttab" ]; then
		echo "[crypttab-unlock] No $crypttab found, skipping."
		return 0
	fi

	while read -r mapping device keyfile options; do
		case "$mapping" in
			""|\\#*) continue ;;
		esac

		case "$device" in
			UUID=*) device="/dev/disk/by-uuid/${device#UUID=}" ;;
		esac

		timeout=20
		while [ ! -b "$device" ] && [ $timeout -gt 0 ]; do
			sleep 0.5
			timeout=$((timeout - 1))
		done

		if [ ! -b "$device" ]; then
			echo "[crypttab-unlock] ERROR: Device $device not found. Skipping $mapping."
			continue
		fi

		if [ -b "/dev/mapper/$mapping" ]; then
			continue
		fi

		if [ -f "$keyfile" ]; then
			cryptsetup open --key-file "$keyfile" "$device" "$mapping"
		else
			cryptsetup open "$device" "$mapping"
		fi || echo "[crypttab-unlock] ERROR: Failed to unlock $mapping from $device."
	done < "$crypttab"
}
"""

_CRYPTTAB_UNLOCK_INSTALL = """#!/bin/bash

build() {
	map add_module 'dm-crypt' 'dm-integrity' 'hid-generic?'
	add_all_modules '/crypto/'

	add_binary 'cryptsetup'

	map add_udev_rule \\
		'10-dm.rules' \\
		'13-dm-disk.rules' \\
		'95-dm-notify.rules'

	# cryptsetup calls pthread_create(), which dlopen()s libgcc_s.so.1
	add_binary '/usr/lib/libgcc_s.so.1'

	add_runscript
}

help() {
	echo "crypttab-unlock: unlock the LUKS devices listed in /etc/crypttab"
}
"""

_MOUNTCRYPT_HOOK = """#!/usr/bin/ash
# mountcrypt: mount the decrypted root volume on $new_root

run_hook() {{
	new_root="/new_root"
	cryptroot="{root_device}"

	timeout=20
	while [ ! -b "$cryptroot" ] && [ $timeout -gt 0 ]; do
		sleep 0.5
		timeout=$((timeout - 1))
	done

	if [ ! -b "$cryptroot" ]; then
		echo "Error: $cryptroot not found" >&2
		return 1
	fi

	mkdir -p "$new_root"

{mounts}
}}
"""

_MOUNTCRYPT_INSTALL = """#!/bin/bash

build() {
	add_runscript
}

help() {
	echo "mountcrypt: mount the decrypted root volume"
}
"""


def construct_modules(config: DeploymentConfig) -> list[str]:
	modules: list[str] = []

	if module := config.disk.filesystem.installation_module:
		modules.append(module)

	modules += ['vfat', 'fat', 'nls_cp437', 'nls_iso8859_1']

	if config.disk.encryption or config.disk.boot_encryption:
		modules += ['dm_crypt', 'dm_mod']

		if config.disk.integrity:
			modules.append('dm_integrity')

	if config.disk.uses_lvm_thin:
		modules.append('dm_thin_pool')

	return modules


def uses_custom_hooks(config: DeploymentConfig) -> bool:
	return config.disk.encryption and not config.disk.uses_lvm_thin


def construct_hooks(config: DeploymentConfig, separate_usr: bool = False) -> list[str]:
	disk = config.disk

	hooks = ['base', 'udev', 'autodetect', 'microcode', 'modconf', 'kms', 'keyboard', 'keymap', 'consolefont', 'block']

	if disk.encryption or disk.uses_lvm_thin:
		hooks.append('lvm2')

	if uses_custom_hooks(config):
		# mountcrypt replaces the filesystems hook
		hooks += ['crypttab-unlock', 'mountcrypt']
		return hooks

	if disk.encryption:
		hooks.append('encrypt')

	if disk.boot_encryption:
		hooks.append('crypttab-unlock')

	if disk.filesystem == FilesystemType.Btrfs:
		hooks.append('btrfs')

	if config.system.hibernation:
		hooks.append('resume')

	hooks += ['filesystems', 'fsck']

	if separate_usr:
		hooks.append('usr')

	return hooks


def construct_files(config: DeploymentConfig, keyfiles: list[VolumeKeyfile] | None = None) -> list[str]:
	if not (config.disk.encryption or config.disk.boot_encryption) or not keyfiles:
		return []

	return ['/etc/crypttab', *[str(entry.keyfile) for entry in keyfiles if entry.keyfile is not None]]


def generate_mkinitcpio_conf(
	config: DeploymentConfig,
	keyfiles: list[VolumeKeyfile] | None = None,
	separate_usr: bool = False,
) -> str:
	modules = construct_modules(config)
	files = construct_files(config, keyfiles)
	hooks = construct_hooks(config, separate_usr)

	return (
		'# mkinitcpio.conf - generated by deploytix\n'
		'# See mkinitcpio.conf(5) for details\n\n'
		f'MODULES=({" ".join(modules)})\n'
		'BINARIES=()\n'
		f'FILES=({" ".join(files)})\n'
		f'HOOKS=({" ".join(hooks)})\n\n'
		'COMPRESSION="zstd"\n'
		'COMPRESSION_OPTIONS=(-T0)\n'
	)


def _mountcrypt_mounts(volumes: VolumeSet) -> str:
	lines = []

	if volumes.subvolumes:
		for subvol in volumes.subvolumes:
			target = '$new_root' if subvol.mount_point == '/' else f'$new_root{subvol.mount_point}'
			lines += [
				f'\tmkdir -p "{target}"',
				f'\tmount -o rw,subvol={subvol.name} "$cryptroot" "{target}" || echo "Warning: could not mount {subvol.name}" >&2',
			]
	else:
		lines.append('\tmount -o rw "$cryptroot" "$new_root" || return 1')

	# /usr has to be present before init runs
	for entry in volumes.entries:
		if entry.mount_point == '/usr':
			lines += [
				'\tmkdir -p "$new_root/usr"',
				f'\tmount -o rw "{entry.device_path}" "$new_root/usr" || echo "Warning: could not mount /usr" >&2',
			]

	return '\n'.join(lines)


def root_volume_path(volumes: VolumeSet) -> str | None:
	if volumes.subvolume_host is not None:
		return volumes.subvolume_host.device_path

	for entry in volumes.entries:
		if entry.mount_point == '/':
			return entry.device_path

	return None


def install_custom_hooks(runner: CommandRunner, volumes: VolumeSet, install_root: Path) -> None:
	info('Installing custom mkinitcpio hooks')

	root_device = root_volume_path(volumes) or ''
	mountcrypt = _MOUNTCRYPT_HOOK.format(root_device=root_device, mounts=_mountcrypt_mounts(volumes))

	for name, hook, install in (
		('crypttab-unlock', _CRYPTTAB_UNLOCK_HOOK, _CRYPTTAB_UNLOCK_INSTALL),
		('mountcrypt', mountcrypt, _MOUNTCRYPT_INSTALL),
	):
		write_file(runner, install_root / HOOKS_DIR.relative_to('/') / name, hook, mode=0o755)
		write_file(runner, install_root / INSTALL_DIR.relative_to('/') / name, install, mode=0o755)


def configure_mkinitcpio(
	runner: CommandRunner,
	config: DeploymentConfig,
	volumes: VolumeSet,
	install_root: Path,
	keyfiles: list[VolumeKeyfile] | None = None,
) -> None:
	separate_usr = any(entry.mount_point == '/usr' for entry in volumes.entries)
	conf = generate_mkinitcpio_conf(config, keyfiles, separate_usr)

	info(f'Configuring mkinitcpio with hooks: {", ".join(construct_hooks(config, separate_usr))}')
	write_file(runner, install_root / 'etc/mkinitcpio.conf', conf)


def regenerate_initramfs(runner: CommandRunner, install_root: Path) -> None:
	info('Regenerating initramfs')
	runner.run_in_chroot(install_root, 'mkinitcpio -P')
