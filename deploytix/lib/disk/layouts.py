from __future__ import annotations

from ..exceptions import ConfigError, DiskTooSmall, ValidationError
from ..hardware import SysInfo
from ..models.device import (
	LVM_PLACEHOLDER_NAME,
	ComputedLayout,
	CustomPartitionEntry,
	DiskConfiguration,
	FilesystemType,
	PartitionDef,
	PartitionGUID,
	PartitionLayout,
	PlannedThinVolume,
	SubvolumeDef,
	SwapType,
)
from ..output import FormattedOutput, debug, info

EFI_MIB = 512
BOOT_MIB = 2048
BIOS_BOOT_MIB = 650

ROOT_RATIO = 0.06441
USR_RATIO = 0.26838
VAR_RATIO = 0.05368

ROOT_MIN_MIB = 20480
USR_MIN_MIB = 20480
VAR_MIN_MIB = 8192

SWAP_MIN_MIB = 4096
SWAP_MAX_MIB = 20480

LVM_THIN_MIN_DATA_MIB = 51200
REMAINDER_THIN_SIZE = '200G'

ALIGN_MIB = 4

_RESERVED_MOUNT_POINTS = ('/boot', '/boot/efi')


def floor_align(value: int, align: int = ALIGN_MIB) -> int:
	return (value // align) * align


def clamp(value: int, minimum: int, maximum: int) -> int:
	return max(minimum, min(value, maximum))


def calculate_swap_mib(ram_mib: int) -> int:
	"""
	Swap is twice the installed RAM, kept within [4 GiB, 20 GiB] and
	aligned down to the partition alignment.
	"""
	return floor_align(clamp(2 * ram_mib, SWAP_MIN_MIB, SWAP_MAX_MIB))


def default_subvolumes() -> list[SubvolumeDef]:
	return [
		SubvolumeDef('@', '/'),
		SubvolumeDef('@usr', '/usr'),
		SubvolumeDef('@var', '/var'),
		SubvolumeDef('@home', '/home'),
	]


def default_planned_thin_volumes() -> list[PlannedThinVolume]:
	return [
		PlannedThinVolume('root', '50G', '/'),
		PlannedThinVolume('usr', '50G', '/usr'),
		PlannedThinVolume('var', '30G', '/var'),
		PlannedThinVolume('home', '200G', '/home'),
	]


def _system_partitions(swap_mib: int | None) -> list[PartitionDef]:
	partitions = [
		PartitionDef(
			number=1,
			name='EFI',
			size_mib=EFI_MIB,
			type_guid=PartitionGUID.EFI,
			mount_point='/boot/efi',
			is_efi=True,
		),
		PartitionDef(
			number=2,
			name='BOOT',
			size_mib=BOOT_MIB,
			type_guid=PartitionGUID.LINUX_FILESYSTEM,
			mount_point='/boot',
			is_boot_fs=True,
			attributes='LegacyBIOSBootable',
		),
	]

	if swap_mib is not None:
		partitions.append(
			PartitionDef(
				number=3,
				name='SWAP',
				size_mib=swap_mib,
				type_guid=PartitionGUID.LINUX_SWAP,
				is_swap=True,
			)
		)

	return partitions


def _reserved_mib(system: list[PartitionDef]) -> int:
	return sum(part.size_mib for part in system)


def compute_standard_layout(disk_mib: int, swap_mib: int | None) -> ComputedLayout:
	partitions = _system_partitions(swap_mib)
	reserved_mib = _reserved_mib(partitions)
	remain_mib = max(disk_mib - reserved_mib, 0)

	min_total_mib = reserved_mib + ROOT_MIN_MIB + USR_MIN_MIB + VAR_MIN_MIB + 1
	if disk_mib < min_total_mib:
		raise DiskTooSmall(disk_mib, min_total_mib)

	root_mib = max(floor_align(int(remain_mib * ROOT_RATIO)), ROOT_MIN_MIB)
	usr_mib = max(floor_align(int(remain_mib * USR_RATIO)), USR_MIN_MIB)
	var_mib = max(floor_align(int(remain_mib * VAR_RATIO)), VAR_MIN_MIB)

	home_mib = disk_mib - reserved_mib - root_mib - usr_mib - var_mib

	if home_mib <= 0:
		deficit = -home_mib + 1

		# Usr gives way first, then Root, then Var
		usr_mib, deficit = _reduce(usr_mib, USR_MIN_MIB, deficit)
		root_mib, deficit = _reduce(root_mib, ROOT_MIN_MIB, deficit)
		var_mib, deficit = _reduce(var_mib, VAR_MIN_MIB, deficit)

		home_mib = disk_mib - reserved_mib - root_mib - usr_mib - var_mib
		debug(f'Rebalanced standard layout, remaining space for home: {home_mib} MiB')

	number = len(partitions)
	for name, size, guid, mount_point in (
		('ROOT', root_mib, PartitionGUID.LINUX_ROOT_X86_64, '/'),
		('USR', usr_mib, PartitionGUID.LINUX_USR_X86_64, '/usr'),
		('VAR', var_mib, PartitionGUID.LINUX_VAR, '/var'),
		('HOME', 0, PartitionGUID.LINUX_HOME, '/home'),
	):
		number += 1
		partitions.append(PartitionDef(number, name, size, guid, mount_point))

	return ComputedLayout(partitions, disk_mib)


def _reduce(size_mib: int, minimum: int, deficit: int) -> tuple[int, int]:
	reducible = size_mib - minimum
	if reducible <= 0 or deficit <= 0:
		return size_mib, deficit

	take = min(deficit, reducible)
	return max(floor_align(size_mib - take), minimum), deficit - take


def compute_minimal_layout(disk_mib: int, swap_mib: int | None) -> ComputedLayout:
	partitions = _system_partitions(swap_mib)

	min_total_mib = _reserved_mib(partitions) + ROOT_MIN_MIB
	if disk_mib < min_total_mib:
		raise DiskTooSmall(disk_mib, min_total_mib)

	partitions.append(
		PartitionDef(
			number=len(partitions) + 1,
			name='ROOT',
			size_mib=0,
			type_guid=PartitionGUID.LINUX_ROOT_X86_64,
			mount_point='/',
		)
	)

	return ComputedLayout(partitions, disk_mib)


def compute_lvm_thin_layout(disk_mib: int, swap_mib: int | None, encryption: bool) -> ComputedLayout:
	partitions = _system_partitions(swap_mib)

	min_total_mib = _reserved_mib(partitions) + LVM_THIN_MIN_DATA_MIB
	if disk_mib < min_total_mib:
		raise DiskTooSmall(disk_mib, min_total_mib)

	partitions.append(_lvm_partition(len(partitions) + 1, encryption))

	return ComputedLayout(
		partitions,
		disk_mib,
		planned_thin_volumes=default_planned_thin_volumes(),
	)


def _lvm_partition(number: int, encryption: bool) -> PartitionDef:
	return PartitionDef(
		number=number,
		name=LVM_PLACEHOLDER_NAME,
		size_mib=0,
		type_guid=PartitionGUID.LINUX_FILESYSTEM,
		is_luks=encryption,
	)


def validate_custom_partitions(entries: list[CustomPartitionEntry] | None, encryption: bool) -> list[CustomPartitionEntry]:
	if entries is None:
		raise ConfigError('Custom layout selected but no custom partitions were defined')

	if not entries:
		raise ConfigError('Custom layout requires at least one partition')

	seen: set[str] = set()
	names: set[str] = set()
	root_count = 0
	remainder_count = 0

	for entry in entries:
		mount_point = entry.mount_point

		if not mount_point.startswith('/'):
			raise ValidationError(f'Mount point must be an absolute path: {mount_point}')

		if mount_point in _RESERVED_MOUNT_POINTS:
			raise ValidationError(f'Mount point {mount_point} is reserved for the system partitions')

		if mount_point in seen:
			raise ValidationError(f'Duplicate mount point in custom layout: {mount_point}')
		seen.add(mount_point)

		name = entry.partition_name().lower()
		if name in names:
			raise ValidationError(f'Partition name {entry.partition_name()} of {mount_point} is already used by another custom partition')
		names.add(name)

		if mount_point == '/':
			root_count += 1

		if entry.size_mib < 0:
			raise ValidationError(f'Partition size for {mount_point} cannot be negative')

		if entry.size_mib == 0:
			remainder_count += 1

		if entry.encryption and not encryption:
			raise ValidationError(f'Partition {mount_point} requests encryption but disk encryption is disabled')

	if root_count == 0:
		raise ValidationError('Custom layout requires a root (/) partition')

	if root_count > 1:
		raise ValidationError('Custom layout defines more than one root (/) partition')

	if remainder_count > 1:
		raise ValidationError('Only one custom partition may use the remaining disk space (size 0)')

	return entries


def compute_custom_layout(
	disk_mib: int,
	swap_mib: int | None,
	entries: list[CustomPartitionEntry] | None,
	encryption: bool,
) -> ComputedLayout:
	entries = validate_custom_partitions(entries, encryption)
	partitions = _system_partitions(swap_mib)

	fixed_mib = sum(entry.size_mib for entry in entries)
	min_total_mib = _reserved_mib(partitions) + fixed_mib
	if any(entry.size_mib == 0 for entry in entries):
		min_total_mib += 1

	if disk_mib < min_total_mib:
		raise DiskTooSmall(disk_mib, min_total_mib)

	for entry in entries:
		partitions.append(
			PartitionDef(
				number=len(partitions) + 1,
				name=entry.partition_name(),
				size_mib=entry.size_mib,
				type_guid=PartitionGUID.from_mount_point(entry.mount_point),
				mount_point=entry.mount_point,
			)
		)

	return ComputedLayout(partitions, disk_mib)


def apply_encryption_flags(layout: ComputedLayout, overrides: dict[int, bool] | None = None) -> None:
	overrides = overrides or {}

	for part in layout.partitions:
		if part.is_system:
			continue

		part.is_luks = overrides.get(part.number, True)


def apply_subvolumes_to_layout(layout: ComputedLayout) -> None:
	"""
	Moves the root partition onto btrfs subvolumes. Subvolumes whose mount
	point is already served by a dedicated partition or thin volume are
	left out.
	"""
	claimed: set[str] = set()

	for part in layout.partitions:
		if part.mount_point and part.mount_point != '/':
			claimed.add(part.mount_point)

	for planned in layout.planned_thin_volumes or []:
		if planned.mount_point != '/':
			claimed.add(planned.mount_point)

	layout.subvolumes = [subvol for subvol in default_subvolumes() if subvol.mount_point not in claimed]

	for part in layout.partitions:
		if part.mount_point == '/':
			part.mount_point = None


def _thin_virtual_size(size_mib: int) -> str:
	if size_mib == 0:
		return REMAINDER_THIN_SIZE

	if size_mib >= 1024:
		return f'{size_mib // 1024}G'

	return f'{size_mib}M'


def _thin_mount_point(part: PartitionDef) -> str:
	if part.mount_point:
		return part.mount_point

	# the root loses its mount point to the subvolumes, its type GUID stays
	if part.type_guid == PartitionGUID.LINUX_ROOT_X86_64:
		return '/'

	return f'/{part.name.lower()}'


def apply_lvm_thin_to_layout(layout: ComputedLayout, encryption: bool) -> None:
	"""
	Collapses every data partition into a single LVM physical volume
	partition. The removed partitions are recorded as planned thin
	volumes; system partitions are kept as they are.
	"""
	system = [part for part in layout.partitions if part.is_system]
	data = [part for part in layout.partitions if not part.is_system]

	planned = [
		PlannedThinVolume(
			name=part.name.lower(),
			virtual_size=_thin_virtual_size(part.size_mib),
			mount_point=_thin_mount_point(part),
		)
		for part in data
	]

	next_number = max((part.number for part in system), default=0) + 1

	layout.partitions = [*system, _lvm_partition(next_number, encryption)]
	layout.planned_thin_volumes = planned


def _custom_encryption_overrides(config: DiskConfiguration, layout: ComputedLayout) -> dict[int, bool]:
	overrides: dict[int, bool] = {}

	if config.custom_partitions is None:
		return overrides

	by_mount = {entry.mount_point: entry for entry in config.custom_partitions}

	for part in layout.partitions:
		entry = by_mount.get(part.mount_point or '')
		if entry is not None and entry.encryption is not None:
			overrides[part.number] = entry.encryption

	return overrides


def compute_layout(config: DiskConfiguration, disk_mib: int, ram_mib: int | None = None) -> ComputedLayout:
	if ram_mib is None:
		ram_mib = SysInfo.ram_mib()

	swap_mib: int | None = None

	match config.swap_type:
		case SwapType.Partition:
			swap_mib = calculate_swap_mib(ram_mib)
		case SwapType.FileZram | SwapType.ZramOnly:
			swap_mib = None

	match config.layout:
		case PartitionLayout.Standard:
			layout = compute_standard_layout(disk_mib, swap_mib)
		case PartitionLayout.Minimal:
			layout = compute_minimal_layout(disk_mib, swap_mib)
		case PartitionLayout.LvmThin:
			layout = compute_lvm_thin_layout(disk_mib, swap_mib, config.encryption)
		case PartitionLayout.Custom:
			layout = compute_custom_layout(disk_mib, swap_mib, config.custom_partitions, config.encryption)
		case _:
			raise ConfigError(f'Unknown partition layout: {config.layout}')

	uses_lvm_thin = config.uses_lvm_thin

	if config.encryption and not uses_lvm_thin:
		overrides = None
		if config.layout == PartitionLayout.Custom:
			overrides = _custom_encryption_overrides(config, layout)
		apply_encryption_flags(layout, overrides)

	if config.use_subvolumes and config.filesystem == FilesystemType.Btrfs:
		apply_subvolumes_to_layout(layout)

	if uses_lvm_thin and config.layout != PartitionLayout.LvmThin:
		apply_lvm_thin_to_layout(layout, config.encryption)

	return layout


def print_layout_summary(layout: ComputedLayout) -> None:
	info(f'Partition layout (total: {layout.total_mib} MiB):')
	info(FormattedOutput.as_table(layout.partitions))

	if layout.subvolumes:
		info('Btrfs subvolumes:')
		for subvol in layout.subvolumes:
			info(f'  {subvol.name} -> {subvol.mount_point} ({subvol.mount_options})')

	if layout.planned_thin_volumes:
		info('LVM thin volumes:')
		for planned in layout.planned_thin_volumes:
			info(f'  {planned.name} ({planned.virtual_size}) -> {planned.mount_point}')
