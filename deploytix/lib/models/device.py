from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NotRequired, TypedDict

from pydantic import BaseModel, Field, field_validator

from ..exceptions import ConfigError
from ..output import debug

DEFAULT_LUKS_MAPPER_NAME = 'Crypt-Root'
DEFAULT_LUKS_BOOT_MAPPER_NAME = 'Crypt-Boot'
LVM_PLACEHOLDER_NAME = 'LVM'


class PartitionLayout(Enum):
	Standard = 'standard'
	Minimal = 'minimal'
	LvmThin = 'lvm-thin'
	Custom = 'custom'

	def display_msg(self) -> str:
		match self:
			case PartitionLayout.Standard:
				return 'Standard (EFI, Boot, Swap, Root, Usr, Var, Home)'
			case PartitionLayout.Minimal:
				return 'Minimal (EFI, Boot, Swap, Root)'
			case PartitionLayout.LvmThin:
				return 'LVM thin provisioning (EFI, Boot, Swap, LVM)'
			case PartitionLayout.Custom:
				return 'Custom partitions'


class FilesystemType(Enum):
	Btrfs = 'btrfs'
	Ext4 = 'ext4'
	Xfs = 'xfs'
	F2fs = 'f2fs'
	Vfat = 'vfat'
	LinuxSwap = 'linux-swap'

	@property
	def installation_pkg(self) -> str | None:
		match self:
			case FilesystemType.Btrfs:
				return 'btrfs-progs'
			case FilesystemType.Ext4:
				return 'e2fsprogs'
			case FilesystemType.Xfs:
				return 'xfsprogs'
			case FilesystemType.F2fs:
				return 'f2fs-tools'
			case FilesystemType.Vfat:
				return 'dosfstools'
			case FilesystemType.LinuxSwap:
				return None

	@property
	def installation_module(self) -> str | None:
		match self:
			case FilesystemType.Btrfs | FilesystemType.Ext4 | FilesystemType.Xfs | FilesystemType.F2fs:
				return self.value
			case FilesystemType.Vfat | FilesystemType.LinuxSwap:
				return None


class SwapType(Enum):
	Partition = 'partition'
	FileZram = 'file-zram'
	ZramOnly = 'zram-only'


class PartitionGUID(Enum):
	"""
	GPT partition type GUIDs, see
	https://en.wikipedia.org/wiki/GUID_Partition_Table#Partition_type_GUIDs
	"""

	EFI = 'C12A7328-F81F-11D2-BA4B-00A0C93EC93B'
	BIOS_BOOT = '21686148-6449-6E6F-744E-656564454649'
	LINUX_SWAP = '0657FD6D-A4AB-43C4-84E5-0933C84B4F4F'
	LINUX_ROOT_X86_64 = '4F68BCE3-E8CD-4DB1-96E7-FBCAF984B709'
	LINUX_USR_X86_64 = '8484680C-9521-48C6-9C11-B0720656F69E'
	LINUX_VAR = '4D21B016-B534-45C2-A9FB-5C16E091FD2D'
	LINUX_HOME = '933AC7E1-2EB4-4F13-B844-0E14E2AEF915'
	LINUX_FILESYSTEM = '0FC63DAF-8483-4772-8E79-3D69D8477DE4'

	@property
	def bytes(self) -> bytes:
		return uuid.UUID(self.value).bytes

	@classmethod
	def from_mount_point(cls, mount_point: str) -> PartitionGUID:
		match mount_point:
			case '/':
				return cls.LINUX_ROOT_X86_64
			case '/usr':
				return cls.LINUX_USR_X86_64
			case '/var':
				return cls.LINUX_VAR
			case '/home':
				return cls.LINUX_HOME
			case _:
				return cls.LINUX_FILESYSTEM


class _CustomPartitionEntrySerialization(TypedDict):
	mount_point: str
	size_mib: int
	label: NotRequired[str]
	encryption: NotRequired[bool]


@dataclass
class CustomPartitionEntry:
	mount_point: str
	size_mib: int = 0
	label: str | None = None
	encryption: bool | None = None

	def partition_name(self) -> str:
		if self.label:
			return self.label.upper()

		if self.mount_point == '/':
			return 'ROOT'

		return self.mount_point.strip('/').replace('/', '_').upper()

	def json(self) -> _CustomPartitionEntrySerialization:
		entry: _CustomPartitionEntrySerialization = {
			'mount_point': self.mount_point,
			'size_mib': self.size_mib,
		}

		if self.label is not None:
			entry['label'] = self.label

		if self.encryption is not None:
			entry['encryption'] = self.encryption

		return entry

	@classmethod
	def parse_arg(cls, arg: _CustomPartitionEntrySerialization) -> CustomPartitionEntry:
		if 'mount_point' not in arg:
			raise ConfigError(f'Custom partition entry is missing a mount point: {arg}')

		return CustomPartitionEntry(
			mount_point=arg['mount_point'],
			size_mib=int(arg.get('size_mib', 0)),
			label=arg.get('label', None),
			encryption=arg.get('encryption', None),
		)


class _DiskConfigurationSerialization(TypedDict):
	device: str
	layout: str
	filesystem: str
	encryption: bool
	luks_mapper_name: str
	boot_encryption: bool
	luks_boot_mapper_name: str
	keyfile_enabled: bool
	integrity: bool
	swap_type: str
	swap_file_size_mib: int
	zram_percent: int
	zram_algorithm: str
	use_subvolumes: bool
	use_lvm_thin: bool
	lvm_vg_name: str
	lvm_thin_pool_name: str
	lvm_thin_pool_percent: int
	custom_partitions: NotRequired[list[_CustomPartitionEntrySerialization]]


@dataclass
class DiskConfiguration:
	device: str = ''
	layout: PartitionLayout = PartitionLayout.Standard
	filesystem: FilesystemType = FilesystemType.Btrfs
	encryption: bool = False
	encryption_password: str | None = None
	luks_mapper_name: str = DEFAULT_LUKS_MAPPER_NAME
	boot_encryption: bool = False
	luks_boot_mapper_name: str = DEFAULT_LUKS_BOOT_MAPPER_NAME
	keyfile_enabled: bool = True
	integrity: bool = False
	swap_type: SwapType = SwapType.Partition
	swap_file_size_mib: int = 0
	zram_percent: int = 50
	zram_algorithm: str = 'zstd'
	use_subvolumes: bool = False
	use_lvm_thin: bool = False
	lvm_vg_name: str = 'vg0'
	lvm_thin_pool_name: str = 'thinpool'
	lvm_thin_pool_percent: int = 95
	custom_partitions: list[CustomPartitionEntry] | None = None

	@property
	def uses_lvm_thin(self) -> bool:
		return self.use_lvm_thin or self.layout == PartitionLayout.LvmThin

	def json(self) -> _DiskConfigurationSerialization:
		config: _DiskConfigurationSerialization = {
			'device': self.device,
			'layout': self.layout.value,
			'filesystem': self.filesystem.value,
			'encryption': self.encryption,
			'luks_mapper_name': self.luks_mapper_name,
			'boot_encryption': self.boot_encryption,
			'luks_boot_mapper_name': self.luks_boot_mapper_name,
			'keyfile_enabled': self.keyfile_enabled,
			'integrity': self.integrity,
			'swap_type': self.swap_type.value,
			'swap_file_size_mib': self.swap_file_size_mib,
			'zram_percent': self.zram_percent,
			'zram_algorithm': self.zram_algorithm,
			'use_subvolumes': self.use_subvolumes,
			'use_lvm_thin': self.use_lvm_thin,
			'lvm_vg_name': self.lvm_vg_name,
			'lvm_thin_pool_name': self.lvm_thin_pool_name,
			'lvm_thin_pool_percent': self.lvm_thin_pool_percent,
		}

		if self.custom_partitions is not None:
			config['custom_partitions'] = [entry.json() for entry in self.custom_partitions]

		return config

	@classmethod
	def parse_arg(cls, arg: dict, enc_password: str | None = None) -> DiskConfiguration:  # type: ignore[type-arg]
		config = DiskConfiguration()

		try:
			if device := arg.get('device', None):
				config.device = device

			if layout := arg.get('layout', None):
				config.layout = PartitionLayout(layout)

			if filesystem := arg.get('filesystem', None):
				config.filesystem = FilesystemType(filesystem)

			if swap_type := arg.get('swap_type', None):
				config.swap_type = SwapType(swap_type)
		except ValueError as err:
			raise ConfigError(f'Invalid disk configuration: {err}') from err

		config.encryption = arg.get('encryption', False)
		config.encryption_password = enc_password
		config.boot_encryption = arg.get('boot_encryption', False)
		config.keyfile_enabled = arg.get('keyfile_enabled', True)
		config.integrity = arg.get('integrity', False)
		config.use_subvolumes = arg.get('use_subvolumes', False)
		config.use_lvm_thin = arg.get('use_lvm_thin', False)

		if mapper_name := arg.get('luks_mapper_name', None):
			config.luks_mapper_name = mapper_name

		if boot_mapper_name := arg.get('luks_boot_mapper_name', None):
			config.luks_boot_mapper_name = boot_mapper_name

		config.swap_file_size_mib = int(arg.get('swap_file_size_mib', 0))
		config.zram_percent = int(arg.get('zram_percent', 50))

		if zram_algorithm := arg.get('zram_algorithm', None):
			config.zram_algorithm = zram_algorithm

		if vg_name := arg.get('lvm_vg_name', None):
			config.lvm_vg_name = vg_name

		if pool_name := arg.get('lvm_thin_pool_name', None):
			config.lvm_thin_pool_name = pool_name

		config.lvm_thin_pool_percent = int(arg.get('lvm_thin_pool_percent', 95))

		if (custom_partitions := arg.get('custom_partitions', None)) is not None:
			config.custom_partitions = [CustomPartitionEntry.parse_arg(entry) for entry in custom_partitions]

		return config


@dataclass
class PartitionDef:
	number: int
	name: str
	size_mib: int
	type_guid: PartitionGUID
	mount_point: str | None = None
	is_efi: bool = False
	is_swap: bool = False
	is_luks: bool = False
	is_bios_boot: bool = False
	is_boot_fs: bool = False
	attributes: str | None = None

	@property
	def is_remainder(self) -> bool:
		return self.size_mib == 0

	@property
	def is_system(self) -> bool:
		return self.is_efi or self.is_boot_fs or self.is_swap or self.is_bios_boot

	def table_data(self) -> dict[str, str | int]:
		return {
			'NUM': self.number,
			'NAME': self.name,
			'SIZE': 'remainder' if self.is_remainder else f'{self.size_mib} MiB',
			'MOUNT': self.mount_point or '-',
		}


@dataclass
class SubvolumeDef:
	name: str
	mount_point: str
	mount_options: str = 'defaults,noatime,compress=zstd'


@dataclass
class PlannedThinVolume:
	name: str
	virtual_size: str
	mount_point: str


@dataclass
class ThinVolumeDef:
	name: str
	virtual_size: str
	mount_point: str

	@classmethod
	def from_planned(cls, planned: PlannedThinVolume) -> ThinVolumeDef:
		return ThinVolumeDef(planned.name, planned.virtual_size, planned.mount_point)


@dataclass
class ComputedLayout:
	partitions: list[PartitionDef]
	total_mib: int
	subvolumes: list[SubvolumeDef] | None = None
	planned_thin_volumes: list[PlannedThinVolume] | None = None

	def find(self, name: str) -> PartitionDef | None:
		for part in self.partitions:
			if part.name.lower() == name.lower():
				return part
		return None

	def uses_subvolumes(self) -> bool:
		return bool(self.subvolumes)

	def remainder_partitions(self) -> list[PartitionDef]:
		return [part for part in self.partitions if part.is_remainder]


@dataclass
class LuksContainer:
	device: str
	mapper_name: str
	mapped_path: str
	volume_name: str


class LsblkInfo(BaseModel):
	name: str
	path: Path
	size: int
	type: str | None
	model: str | None = None
	tran: str | None = None
	rm: bool = False
	ro: bool = False
	mountpoints: list[Path] = Field(default_factory=list)
	children: list[LsblkInfo] = Field(default_factory=list)

	@field_validator('mountpoints', mode='before')
	@classmethod
	def remove_none(cls, v: list[Path | None] | None) -> list[Path]:
		if v is None:
			return []
		return [item for item in v if item is not None]

	@field_validator('model', mode='before')
	@classmethod
	def strip_model(cls, v: str | None) -> str | None:
		if v is None:
			return None
		return v.strip() or None

	@property
	def size_mib(self) -> int:
		return self.size // (1024 * 1024)

	def is_mounted(self) -> bool:
		if self.mountpoints:
			return True

		for child in self.children:
			if child.is_mounted():
				debug(f'{child.path} is mounted at {[str(m) for m in child.mountpoints]}')
				return True

		return False

	def table_data(self) -> dict[str, str | int]:
		return {
			'path': str(self.path),
			'size': f'{self.size_mib} MiB',
			'model': self.model or 'Unknown',
			'transport': self.tran or '-',
			'removable': 'yes' if self.rm else 'no',
		}

	@classmethod
	def fields(cls) -> list[str]:
		return [name for name in cls.model_fields if name != 'children']
