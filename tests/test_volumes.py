import pytest

from deploytix.lib.disk.layouts import compute_layout
from deploytix.lib.disk.luks import mapper_name_for
from deploytix.lib.disk.lvm import default_thin_volumes
from deploytix.lib.disk.utils import partition_path
from deploytix.lib.disk.volumes import VolumeSet
from deploytix.lib.exceptions import ConfigError
from deploytix.lib.models.device import (
	ComputedLayout,
	CustomPartitionEntry,
	DiskConfiguration,
	FilesystemType,
	LuksContainer,
	PartitionDef,
	PartitionGUID,
	PartitionLayout,
)

RAM_MIB = 8192


def _container(volume_name: str, device: str, mapper_name: str | None = None) -> LuksContainer:
	mapper_name = mapper_name or mapper_name_for(volume_name, 'Crypt-Root')
	return LuksContainer(device, mapper_name, f'/dev/mapper/{mapper_name}', volume_name)


@pytest.mark.parametrize(
	'device, number, expected',
	[
		('/dev/sda', 2, '/dev/sda2'),
		('/dev/vdb', 1, '/dev/vdb1'),
		('/dev/nvme0n1', 3, '/dev/nvme0n1p3'),
		('/dev/mmcblk0', 1, '/dev/mmcblk0p1'),
		('/dev/loop7', 4, '/dev/loop7p4'),
	],
)
def test_partition_path(device: str, number: int, expected: str) -> None:
	assert partition_path(device, number) == expected


def test_from_layout_standard() -> None:
	layout = compute_layout(DiskConfiguration(device='/dev/nvme0n1'), 500000, RAM_MIB)
	volumes = VolumeSet.from_layout(layout, '/dev/nvme0n1')

	assert volumes.efi == '/dev/nvme0n1p1'
	assert volumes.boot.raw_device == '/dev/nvme0n1p2'
	assert volumes.boot.device_path == '/dev/nvme0n1p2'
	assert not volumes.boot.encrypted
	assert volumes.swap == '/dev/nvme0n1p3'

	assert [(e.name, e.mount_point, e.device_path) for e in volumes.entries] == [
		('ROOT', '/', '/dev/nvme0n1p4'),
		('USR', '/usr', '/dev/nvme0n1p5'),
		('VAR', '/var', '/dev/nvme0n1p6'),
		('HOME', '/home', '/dev/nvme0n1p7'),
	]
	assert not volumes.has_encryption()
	assert volumes.all_luks_containers() == []


def test_from_layout_without_boot_partition() -> None:
	layout = ComputedLayout(
		[
			PartitionDef(1, 'EFI', 512, PartitionGUID.EFI, '/boot/efi', is_efi=True),
			PartitionDef(2, 'ROOT', 0, PartitionGUID.LINUX_ROOT_X86_64, '/'),
		],
		100000,
	)

	with pytest.raises(ConfigError):
		VolumeSet.from_layout(layout, '/dev/sda')


def test_encrypted_entries_mirror_layout_flags() -> None:
	config = DiskConfiguration(device='/dev/sda', encryption=True)
	volumes = VolumeSet.from_layout(compute_layout(config, 500000, RAM_MIB), '/dev/sda')

	assert all(entry.encrypted for entry in volumes.entries)
	assert all(entry.luks_container is None for entry in volumes.entries)


def test_apply_encryption_rewrites_only_matched_entry() -> None:
	volumes = VolumeSet.from_layout(compute_layout(DiskConfiguration(device='/dev/sda'), 500000, RAM_MIB), '/dev/sda')
	container = _container('usr', '/dev/sda5')

	volumes.apply_encryption([container, _container('DOESNOTEXIST', '/dev/sda9')])

	by_name = {entry.name: entry for entry in volumes.entries}

	assert by_name['USR'].device_path == '/dev/mapper/Crypt-Usr'
	assert by_name['USR'].encrypted
	assert by_name['USR'].luks_container is container

	for name in ('ROOT', 'VAR', 'HOME'):
		assert not by_name[name].encrypted
		assert by_name[name].luks_container is None
		assert by_name[name].device_path.startswith('/dev/sda')

	assert volumes.has_encryption()
	assert volumes.all_luks_containers() == [container]


def test_apply_boot_encryption() -> None:
	volumes = VolumeSet.from_layout(compute_layout(DiskConfiguration(device='/dev/sda'), 500000, RAM_MIB), '/dev/sda')
	root = _container('ROOT', '/dev/sda4')
	boot = _container('BOOT', '/dev/sda2', 'Crypt-Boot')

	volumes.apply_encryption([root])
	volumes.apply_boot_encryption(boot)

	assert volumes.boot.raw_device == '/dev/sda2'
	assert volumes.boot.device_path == '/dev/mapper/Crypt-Boot'
	assert volumes.boot.encrypted
	assert volumes.all_luks_containers() == [root, boot]


def test_apply_lvm_thin() -> None:
	config = DiskConfiguration(device='/dev/sda', layout=PartitionLayout.LvmThin, encryption=True)
	volumes = VolumeSet.from_layout(compute_layout(config, 500000, RAM_MIB), '/dev/sda')

	placeholder = volumes.lvm_placeholder()
	assert placeholder is not None
	assert placeholder.mount_point == ''
	assert placeholder.device_path == '/dev/sda4'

	pv = _container('LVM', '/dev/sda4')
	volumes.apply_encryption([pv])
	assert pv.mapper_name == 'Crypt-Lvm'

	volumes.apply_lvm_thin('vg0', default_thin_volumes())

	assert volumes.lvm_placeholder() is None
	assert [(e.name, e.mount_point, e.device_path) for e in volumes.entries] == [
		('root', '/', '/dev/vg0/root'),
		('usr', '/usr', '/dev/vg0/usr'),
		('var', '/var', '/dev/vg0/var'),
		('home', '/home', '/dev/vg0/home'),
	]
	assert not any(entry.encrypted for entry in volumes.entries)

	# the physical volume container survives the placeholder
	assert volumes.pv_container is pv
	assert volumes.has_encryption()
	assert volumes.all_luks_containers() == [pv]

	mount_points = [entry.mount_point for entry in volumes.entries]
	assert all(mount_points) and len(set(mount_points)) == len(mount_points)


def test_apply_lvm_thin_with_subvolumes() -> None:
	config = DiskConfiguration(
		device='/dev/sda',
		layout=PartitionLayout.LvmThin,
		filesystem=FilesystemType.Btrfs,
		use_subvolumes=True,
	)
	layout = compute_layout(config, 500000, RAM_MIB)
	volumes = VolumeSet.from_layout(layout, '/dev/sda')

	volumes.apply_lvm_thin('vg0', default_thin_volumes())

	assert volumes.subvolume_host is not None
	assert volumes.subvolume_host.device_path == '/dev/vg0/root'
	assert [entry.mount_point for entry in volumes.entries] == ['/usr', '/var', '/home']


def test_subvolume_host_is_encrypted_by_name() -> None:
	config = DiskConfiguration(
		device='/dev/sda',
		layout=PartitionLayout.Minimal,
		filesystem=FilesystemType.Btrfs,
		encryption=True,
		use_subvolumes=True,
	)
	volumes = VolumeSet.from_layout(compute_layout(config, 100000, RAM_MIB), '/dev/sda')

	assert volumes.entries == []
	assert volumes.subvolume_host is not None
	assert volumes.subvolume_host.encrypted

	root = _container('ROOT', '/dev/sda4')
	volumes.apply_encryption([root])

	assert volumes.subvolume_host.device_path == '/dev/mapper/Crypt-Root'
	assert volumes.all_luks_containers() == [root]


def test_mount_and_unmount_order() -> None:
	config = DiskConfiguration(device='/dev/sda', layout=PartitionLayout.Custom)
	config.custom_partitions = [
		CustomPartitionEntry('/srv/data/archive', 1024),
		CustomPartitionEntry('/home', 1024),
		CustomPartitionEntry('/srv/data', 1024),
		CustomPartitionEntry('/', 0),
	]
	volumes = VolumeSet.from_layout(compute_layout(config, 200000, RAM_MIB), '/dev/sda')

	mount = [entry.mount_point for entry in volumes.entries_mount_order()]
	unmount = [entry.mount_point for entry in volumes.entries_unmount_order()]

	assert mount == ['/home', '/', '/srv/data', '/srv/data/archive']
	assert unmount == ['/srv/data/archive', '/srv/data', '/home', '/']

	depths = [entry.depth for entry in volumes.entries_mount_order()]
	assert depths == sorted(depths)
