from .layouts import calculate_swap_mib, compute_layout, print_layout_summary, validate_custom_partitions
from .utils import get_device_info, list_block_devices, partition_path
from .volumes import BootVolume, VolumeEntry, VolumeSet

__all__ = [
	'BootVolume',
	'VolumeEntry',
	'VolumeSet',
	'calculate_swap_mib',
	'compute_layout',
	'get_device_info',
	'list_block_devices',
	'partition_path',
	'print_layout_summary',
	'validate_custom_partitions',
]
