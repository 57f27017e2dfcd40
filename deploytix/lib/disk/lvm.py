from __future__ import annotations

from ..exceptions import CommandFailed, PartitionError
from ..general import CommandRunner
from ..models.device import PlannedThinVolume, ThinVolumeDef
from ..output import debug, info
from .layouts import default_planned_thin_volumes
from .utils import udev_sync


def lv_path(vg_name: str, lv_name: str) -> str:
	return f'/dev/{vg_name}/{lv_name}'


def lv_mapper_path(vg_name: str, lv_name: str) -> str:
	# device-mapper doubles dashes inside the VG and LV names
	return f'/dev/mapper/{vg_name.replace("-", "--")}-{lv_name.replace("-", "--")}'


def default_thin_volumes() -> list[ThinVolumeDef]:
	return [ThinVolumeDef.from_planned(vol) for vol in default_planned_thin_volumes()]


def thin_volumes_from_plan(planned: list[PlannedThinVolume] | None) -> list[ThinVolumeDef]:
	if not planned:
		return default_thin_volumes()
	return [ThinVolumeDef.from_planned(vol) for vol in planned]


def create_pv(runner: CommandRunner, device: str) -> None:
	info(f'Creating LVM physical volume on {device}')

	try:
		runner.run('pvcreate', ['-ff', '-y', device])
	except CommandFailed as err:
		raise PartitionError(f'Could not create physical volume on {device}: {err.stderr.strip()}') from err


def create_vg(runner: CommandRunner, vg_name: str, device: str) -> None:
	info(f'Creating volume group {vg_name}')

	try:
		runner.run('vgcreate', [vg_name, device])
	except CommandFailed as err:
		raise PartitionError(f'Could not create volume group {vg_name}: {err.stderr.strip()}') from err


def create_thin_pool(runner: CommandRunner, vg_name: str, pool_name: str, percent: int) -> None:
	info(f'Creating thin pool {vg_name}/{pool_name} ({percent}% of the volume group)')

	try:
		runner.run('lvcreate', ['--type', 'thin-pool', '-l', f'{percent}%VG', '-n', pool_name, vg_name])
	except CommandFailed as err:
		raise PartitionError(f'Could not create thin pool {pool_name}: {err.stderr.strip()}') from err


def create_thin_lv(runner: CommandRunner, vg_name: str, pool_name: str, volume: ThinVolumeDef) -> None:
	debug(f'Creating thin volume {volume.name} ({volume.virtual_size}) for {volume.mount_point}')

	try:
		runner.run('lvcreate', ['-V', volume.virtual_size, '--thin', '-n', volume.name, f'{vg_name}/{pool_name}'])
	except CommandFailed as err:
		raise PartitionError(f'Could not create thin volume {volume.name}: {err.stderr.strip()}') from err


def create_all_thin_volumes(
	runner: CommandRunner,
	vg_name: str,
	pool_name: str,
	volumes: list[ThinVolumeDef],
) -> None:
	for volume in volumes:
		create_thin_lv(runner, vg_name, pool_name, volume)


def activate_vg(runner: CommandRunner, vg_name: str) -> None:
	try:
		runner.run('vgchange', ['-ay', vg_name])
	except CommandFailed as err:
		raise PartitionError(f'Could not activate volume group {vg_name}: {err.stderr.strip()}') from err

	udev_sync(runner)


def deactivate_vg(runner: CommandRunner, vg_name: str) -> None:
	runner.force_run('vgchange', ['-an', vg_name])


def setup_lvm_thin(
	runner: CommandRunner,
	pv_device: str,
	vg_name: str,
	pool_name: str,
	pool_percent: int,
	volumes: list[ThinVolumeDef],
) -> None:
	"""
	Builds the whole LVM thin stack on top of pv_device: the physical
	volume, the volume group, the thin pool and every thin volume, and
	leaves the volume group active.
	"""
	create_pv(runner, pv_device)
	create_vg(runner, vg_name, pv_device)
	create_thin_pool(runner, vg_name, pool_name, pool_percent)
	create_all_thin_volumes(runner, vg_name, pool_name, volumes)
	activate_vg(runner, vg_name)
