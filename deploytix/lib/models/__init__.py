from .desktop import DesktopConfiguration, DesktopEnvironment
from .device import (
	ComputedLayout,
	CustomPartitionEntry,
	DiskConfiguration,
	FilesystemType,
	LsblkInfo,
	LuksContainer,
	PartitionDef,
	PartitionGUID,
	PartitionLayout,
	PlannedThinVolume,
	SubvolumeDef,
	SwapType,
	ThinVolumeDef,
)
from .network import NetworkBackend, NetworkConfiguration
from .system import Bootloader, InitSystem, SystemConfiguration
from .users import User

__all__ = [
	'Bootloader',
	'ComputedLayout',
	'CustomPartitionEntry',
	'DesktopConfiguration',
	'DesktopEnvironment',
	'DiskConfiguration',
	'FilesystemType',
	'InitSystem',
	'LsblkInfo',
	'LuksContainer',
	'NetworkBackend',
	'NetworkConfiguration',
	'PartitionDef',
	'PartitionGUID',
	'PartitionLayout',
	'PlannedThinVolume',
	'SubvolumeDef',
	'SwapType',
	'SystemConfiguration',
	'ThinVolumeDef',
	'User',
]
