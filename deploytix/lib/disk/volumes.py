"""
Volume resolution after the storage feature layers are applied.

A VolumeSet is built from a ComputedLayout and then rewritten in place,
first by the encryption layer and then by the LVM thin layer. Everything
downstream (formatting, mounting, fstab, crypttab, bootloader) reads the
final VolumeSet instead of branching on the layout preset.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import ConfigError
from ..models.device import LVM_PLACEHOLDER_NAME, ComputedLayout, LuksContainer, SubvolumeDef, ThinVolumeDef
from .lvm import lv_path
from .utils import partition_path


@dataclass
class VolumeEntry:
	name: str
	mount_point: str
	device_path: str
	encrypted: bool = False
	luks_container: LuksContainer | None = None
	lv_name: str | None = None

	@property
	def is_lvm_placeholder(self) -> bool:
		return self.name == LVM_PLACEHOLDER_NAME

	@property
	def depth(self) -> int:
		return self.mount_point.count('/')


@dataclass
class BootVolume:
	raw_device: str
	device_path: str
	encrypted: bool = False
	luks_container: LuksContainer | None = None


@dataclass
class VolumeSet:
	entries: list[VolumeEntry]
	boot: BootVolume
	efi: str
	swap: str | None = None
	subvolumes: list[SubvolumeDef] | None = None
	# the volume carrying the btrfs subvolumes, its mount point is "/"
	subvolume_host: VolumeEntry | None = None
	# container of the LVM physical volume, kept once the placeholder is gone
	pv_container: LuksContainer | None = None

	@classmethod
	def from_layout(cls, layout: ComputedLayout, device: str) -> VolumeSet:
		entries: list[VolumeEntry] = []
		boot: BootVolume | None = None
		efi = ''
		swap: str | None = None
		host: VolumeEntry | None = None

		for part in layout.partitions:
			dev = partition_path(device, part.number)

			if part.is_efi:
				efi = dev
			elif part.is_boot_fs:
				boot = BootVolume(raw_device=dev, device_path=dev)
			elif part.is_swap:
				swap = dev
			elif part.is_bios_boot:
				continue
			elif part.mount_point:
				entries.append(VolumeEntry(part.name, part.mount_point, dev, encrypted=part.is_luks))
			elif part.name == LVM_PLACEHOLDER_NAME:
				entries.append(VolumeEntry(LVM_PLACEHOLDER_NAME, '', dev, encrypted=part.is_luks))
			elif layout.subvolumes:
				host = VolumeEntry(part.name, '/', dev, encrypted=part.is_luks)

		if boot is None:
			raise ConfigError('Partition layout does not define a boot partition')

		return VolumeSet(
			entries=entries,
			boot=boot,
			efi=efi,
			swap=swap,
			subvolumes=layout.subvolumes,
			subvolume_host=host,
		)

	def data_volumes(self) -> list[VolumeEntry]:
		volumes = list(self.entries)
		if self.subvolume_host is not None:
			volumes.append(self.subvolume_host)
		return volumes

	def lvm_placeholder(self) -> VolumeEntry | None:
		for entry in self.entries:
			if entry.is_lvm_placeholder:
				return entry
		return None

	def apply_encryption(self, containers: list[LuksContainer]) -> None:
		for container in containers:
			canon = container.volume_name.lower()

			for entry in self.data_volumes():
				if entry.name.lower() == canon:
					entry.device_path = container.mapped_path
					entry.encrypted = True
					entry.luks_container = container
					break

	def apply_boot_encryption(self, container: LuksContainer) -> None:
		self.boot.device_path = container.mapped_path
		self.boot.encrypted = True
		self.boot.luks_container = container

	def apply_lvm_thin(self, vg_name: str, thin_volumes: list[ThinVolumeDef]) -> None:
		"""
		Replaces the LVM placeholder with one entry per thin volume. The
		thin volumes are never marked encrypted, the encryption (if any)
		lives on the physical volume underneath.
		"""
		if (placeholder := self.lvm_placeholder()) is not None and placeholder.luks_container is not None:
			self.pv_container = placeholder.luks_container

		self.entries = [entry for entry in self.entries if not entry.is_lvm_placeholder]

		for vol in thin_volumes:
			entry = VolumeEntry(
				name=vol.name,
				mount_point=vol.mount_point,
				device_path=lv_path(vg_name, vol.name),
				lv_name=vol.name,
			)

			if self.subvolumes and vol.mount_point == '/':
				self.subvolume_host = entry
			else:
				self.entries.append(entry)

	def entries_mount_order(self) -> list[VolumeEntry]:
		return sorted(self.entries, key=lambda e: e.depth)

	def entries_unmount_order(self) -> list[VolumeEntry]:
		return sorted(self.entries, key=lambda e: e.depth, reverse=True)

	def has_encryption(self) -> bool:
		return any(entry.encrypted for entry in self.data_volumes()) or self.pv_container is not None or self.boot.encrypted

	def all_luks_containers(self) -> list[LuksContainer]:
		containers = [entry.luks_container for entry in self.data_volumes() if entry.luks_container is not None]

		if self.pv_container is not None:
			containers.append(self.pv_container)

		if self.boot.luks_container is not None:
			containers.append(self.boot.luks_container)

		return containers
