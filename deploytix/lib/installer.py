from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from . import interrupt
from .args import DeploymentConfig
from .cleanup import emergency_cleanup
from .configure.basestrap import run_basestrap
from .configure.desktop import install_desktop
from .configure.fstab import write_fstab
from .configure.mkinitcpio import configure_mkinitcpio, install_custom_hooks, regenerate_initramfs, uses_custom_hooks
from .configure.secureboot import setup_secureboot
from .configure.swap import configure_swap
from .configure.system import configure_system
from .disk.formatting import create_btrfs_subvolumes, format_volume_set, mount_volume_set
from .disk.layouts import compute_layout, print_layout_summary
from .disk.luks import (
	VolumeKeyfile,
	close_luks,
	close_multi_luks,
	mapper_name_for,
	password_entries,
	setup_boot_encryption,
	setup_keyfiles_for_volumes,
	setup_multi_volume_encryption,
	setup_single_luks,
	write_crypttab,
)
from .disk.lvm import deactivate_vg, setup_lvm_thin, thin_volumes_from_plan
from .disk.partitioning import SECTOR_SIZE, apply_partitions
from .disk.utils import get_device_info, unmount_all
from .disk.volumes import VolumeSet
from .exceptions import CommandFailed, ConfigError, Interrupted
from .general import CommandRunner, locate_binary
from .hardware import SysInfo
from .models.device import ComputedLayout, SwapType
from .output import debug, info, progress, warn
from .storage import storage

ProgressCallback = Callable[[float, str], None]

SUBVOLUME_MOUNT = Path('/tmp/deploytix-btrfs')

REQUIRED_BINARIES = ['sfdisk', 'wipefs', 'partprobe', 'udevadm', 'blkid', 'mount', 'umount', 'basestrap']


class Installer:
	"""
	Runs every phase of an installation against the configured device.

	The storage features are applied as layers on a VolumeSet, which every
	later phase reads. Any error or interruption triggers an emergency
	cleanup before it propagates.
	"""

	def __init__(
		self,
		config: DeploymentConfig,
		runner: CommandRunner,
		install_root: Path = Path('/install'),
		progress: ProgressCallback | None = None,
		ram_mib: int | None = None,
	) -> None:
		self.config = config
		self.runner = runner
		self.install_root = install_root
		self._progress = progress
		self._ram_mib = ram_mib

		self.layout: ComputedLayout | None = None
		self.volumes: VolumeSet | None = None
		self.keyfiles: list[VolumeKeyfile] = []
		self.total_sectors = 0

		storage['installation_session'] = self

	@property
	def ram_mib(self) -> int:
		if self._ram_mib is None:
			self._ram_mib = SysInfo.ram_mib()
		return self._ram_mib

	def _report(self, fraction: float, label: str) -> None:
		progress(fraction, label)

		if self._progress is not None:
			self._progress(fraction, label)

	def _volumes(self) -> VolumeSet:
		if self.volumes is None:
			raise ConfigError('Storage has not been provisioned yet')
		return self.volumes

	def run(self) -> None:
		try:
			self._run_phases()
		except Interrupted:
			warn('Installation interrupted')
			self._emergency_cleanup()
			interrupt.reraise(self.runner.token)
			raise
		except Exception:
			self._emergency_cleanup()

			# the child got the signal first, its failure is the interrupt
			if self.runner.token.interrupted:
				warn('Installation interrupted')
				interrupt.reraise(self.runner.token)
			raise

	def _run_phases(self) -> None:
		disk = self.config.disk

		self._report(0.00, 'Preparing installation')
		self.prepare()

		self._report(0.05, 'Partitioning disk')
		self.partition()

		self._report(0.15, 'Provisioning storage')
		self.provision_storage()

		self._report(0.35, 'Installing base system')
		run_basestrap(self.runner, self.config, self.install_root)

		self._report(0.55, 'Generating fstab')
		write_fstab(self.runner, self._volumes(), disk.filesystem, disk.swap_type, self.install_root)

		if self._volumes().has_encryption():
			self._report(0.60, 'Setting up keyfiles and crypttab')
			self.setup_crypttab()

		if disk.swap_type != SwapType.Partition:
			self._report(0.65, 'Configuring swap')
			configure_swap(self.runner, disk, self.config.system.init, self.install_root, self.ram_mib)

		self._report(0.70, 'Configuring system')
		configure_mkinitcpio(self.runner, self.config, self._volumes(), self.install_root, self.keyfiles)
		configure_system(self.runner, self.config, self._volumes(), self.install_root)

		if uses_custom_hooks(self.config):
			self._report(0.80, 'Installing custom initramfs hooks')
			install_custom_hooks(self.runner, self._volumes(), self.install_root)

		if self.config.system.secureboot:
			self._report(0.85, 'Setting up SecureBoot')
			setup_secureboot(self.runner, self.config, self.install_root)

		self._report(0.90, 'Installing desktop environment')
		install_desktop(self.runner, self.config, self.install_root)

		self._report(0.95, 'Finalizing installation')
		self.finalize()

		self._report(1.00, 'Installation complete')

	def _check_requirements(self) -> None:
		binaries = list(REQUIRED_BINARIES)
		disk = self.config.disk

		if disk.encryption or disk.boot_encryption:
			binaries.append('cryptsetup')

		if disk.uses_lvm_thin:
			binaries += ['pvcreate', 'vgcreate', 'lvcreate', 'vgchange']

		for binary in binaries:
			locate_binary(binary)

	def prepare(self) -> None:
		self.config.validate()

		if not self.runner.is_dry_run():
			self._check_requirements()

		device_info = get_device_info(self.config.disk.device)
		disk_mib = device_info.size_mib
		self.total_sectors = device_info.size // SECTOR_SIZE

		info(f'Target device: {self.config.disk.device} ({disk_mib} MiB)')

		self.layout = compute_layout(self.config.disk, disk_mib, self.ram_mib)
		print_layout_summary(self.layout)

	def partition(self) -> None:
		if self.layout is None:
			raise ConfigError('No partition layout has been computed')

		apply_partitions(self.runner, self.config.disk.device, self.layout, self.total_sectors)

	def provision_storage(self) -> None:
		if self.layout is None:
			raise ConfigError('No partition layout has been computed')

		disk = self.config.disk
		volumes = VolumeSet.from_layout(self.layout, disk.device)
		self.volumes = volumes

		if disk.uses_lvm_thin:
			self._provision_lvm_thin(volumes)
		elif disk.encryption:
			self._provision_encrypted(volumes)
		else:
			debug('No storage layers to apply, using the partitions as they are')

		if disk.boot_encryption:
			container = setup_boot_encryption(
				self.runner,
				volumes.boot.raw_device,
				disk.luks_boot_mapper_name,
				disk.encryption_password or '',
			)
			volumes.apply_boot_encryption(container)

		format_volume_set(self.runner, volumes, disk.filesystem)

		if volumes.subvolume_host is not None and volumes.subvolumes:
			create_btrfs_subvolumes(self.runner, volumes.subvolume_host.device_path, volumes.subvolumes, SUBVOLUME_MOUNT)

		mount_volume_set(self.runner, volumes, self.install_root)

	def _provision_lvm_thin(self, volumes: VolumeSet) -> None:
		disk = self.config.disk

		if (placeholder := volumes.lvm_placeholder()) is None:
			raise ConfigError('LVM thin provisioning requires an LVM partition')

		pv_device = placeholder.device_path

		if disk.encryption:
			container = setup_single_luks(
				self.runner,
				placeholder.device_path,
				disk.encryption_password or '',
				mapper_name_for(placeholder.name),
				placeholder.name,
				integrity=disk.integrity,
			)
			volumes.apply_encryption([container])
			pv_device = container.mapped_path

		thin_volumes = thin_volumes_from_plan(self.layout.planned_thin_volumes if self.layout else None)

		setup_lvm_thin(
			self.runner,
			pv_device,
			disk.lvm_vg_name,
			disk.lvm_thin_pool_name,
			disk.lvm_thin_pool_percent,
			thin_volumes,
		)

		volumes.apply_lvm_thin(disk.lvm_vg_name, thin_volumes)

	def _provision_encrypted(self, volumes: VolumeSet) -> None:
		disk = self.config.disk
		targets = [(entry.name, entry.device_path) for entry in volumes.data_volumes() if entry.encrypted]

		containers = setup_multi_volume_encryption(
			self.runner,
			targets,
			disk.encryption_password or '',
			disk.luks_mapper_name,
			integrity=disk.integrity,
		)

		volumes.apply_encryption(containers)

	def setup_crypttab(self) -> None:
		disk = self.config.disk
		containers = self._volumes().all_luks_containers()

		if disk.keyfile_enabled:
			self.keyfiles = setup_keyfiles_for_volumes(self.runner, containers, disk.encryption_password or '', self.install_root)
		else:
			info('Keyfiles disabled, volumes will ask for the password at boot')
			self.keyfiles = password_entries(containers)

		write_crypttab(self.runner, self.install_root, self.keyfiles)

	def finalize(self) -> None:
		volumes = self._volumes()

		regenerate_initramfs(self.runner, self.install_root)
		unmount_all(self.runner, self.install_root)

		if self.config.disk.uses_lvm_thin:
			try:
				deactivate_vg(self.runner, self.config.disk.lvm_vg_name)
			except CommandFailed as err:
				warn(f'Could not deactivate volume group {self.config.disk.lvm_vg_name}: {err}')

		boot = volumes.boot.luks_container
		data = [container for container in volumes.all_luks_containers() if container is not boot]

		close_multi_luks(self.runner, data)

		if boot is not None:
			try:
				close_luks(self.runner, boot.mapper_name)
			except CommandFailed as err:
				warn(f'Could not close {boot.mapper_name}: {err}')

	def _emergency_cleanup(self) -> None:
		vg_name = self.config.disk.lvm_vg_name if self.config.disk.uses_lvm_thin else None

		try:
			emergency_cleanup(self.runner, self.install_root, vg_name)
		except Exception as err:
			# never mask the error that caused the cleanup
			warn(f'Emergency cleanup failed: {err}')
