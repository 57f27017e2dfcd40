from __future__ import annotations

import uuid

from ..exceptions import CommandFailed, PartitionError
from ..general import CommandRunner
from ..models.device import ComputedLayout
from ..output import debug, info
from .utils import partition_path, udev_sync

SECTOR_SIZE = 512
FIRST_LBA = 2048
# the backup GPT occupies the last 33 sectors
GPT_BACKUP_SECTORS = 34
ALIGN_SECTORS = (1024 * 1024) // SECTOR_SIZE


def _align_up(sector: int) -> int:
	return -(-sector // ALIGN_SECTORS) * ALIGN_SECTORS


def generate_sfdisk_script(device: str, layout: ComputedLayout, total_sectors: int) -> str:
	"""
	Renders the layout as an sfdisk script. Every partition starts on a
	1 MiB boundary and the remainder partition (size 0) extends to the
	last usable sector.
	"""
	last_lba = total_sectors - GPT_BACKUP_SECTORS

	lines = [
		'label: gpt',
		f'label-id: {uuid.uuid4()}',
		f'device: {device}',
		'unit: sectors',
		f'first-lba: {FIRST_LBA}',
		f'last-lba: {last_lba}',
		f'sector-size: {SECTOR_SIZE}',
		'',
	]

	current = FIRST_LBA

	for part in layout.partitions:
		if part.is_remainder:
			size = last_lba - current + 1
		else:
			size = part.size_mib * ALIGN_SECTORS

		if size <= 0 or current + size - 1 > last_lba:
			raise PartitionError(f'Partition {part.name} does not fit on {device}')

		line = (
			f'{partition_path(device, part.number)} : start={current}, size={size}, '
			f'type={part.type_guid.value}, uuid={uuid.uuid4()}, name="{part.name}"'
		)

		if part.attributes:
			line += f', attrs="{part.attributes}"'

		lines.append(line)
		current = _align_up(current + size)

	return '\n'.join(lines) + '\n'


def apply_partitions(runner: CommandRunner, device: str, layout: ComputedLayout, total_sectors: int) -> None:
	script = generate_sfdisk_script(device, layout, total_sectors)
	debug(f'sfdisk script for {device}:\n{script}')

	info(f'Wiping signatures on {device}')

	try:
		runner.run('wipefs', ['-a', device])
		runner.run('sfdisk', [device], input_data=script.encode())
	except CommandFailed as err:
		raise PartitionError(f'Could not partition {device}: {err.stderr.strip()}') from err

	try:
		runner.run('partprobe', [device])
	except CommandFailed as err:
		debug(f'partprobe {device} failed: {err}')

	udev_sync(runner)

	info(f'Created {len(layout.partitions)} partitions on {device}')
