import os
from pathlib import Path

import pytest

from conftest import RecordingRunner
from deploytix.lib.args import DeploymentConfig
from deploytix.lib.configure.desktop import install_desktop
from deploytix.lib.configure.mkinitcpio import install_custom_hooks
from deploytix.lib.configure.secureboot import efi_binaries, setup_secureboot
from deploytix.lib.configure.services import enable_service
from deploytix.lib.configure.swap import configure_swap, create_swap_file
from deploytix.lib.configure.system import configure_system, install_bootloader
from deploytix.lib.disk.layouts import compute_layout
from deploytix.lib.disk.luks import mapper_name_for
from deploytix.lib.disk.volumes import VolumeSet
from deploytix.lib.exceptions import ConfigError
from deploytix.lib.models.device import DiskConfiguration, FilesystemType, LuksContainer, SwapType
from deploytix.lib.models.system import Bootloader, InitSystem


def _encrypted_volumes(config: DeploymentConfig) -> VolumeSet:
	volumes = VolumeSet.from_layout(compute_layout(config.disk, 500000, 8192), config.disk.device)

	containers = []
	for entry in volumes.data_volumes():
		mapper_name = mapper_name_for(entry.name, config.disk.luks_mapper_name)
		containers.append(LuksContainer(entry.device_path, mapper_name, f'/dev/mapper/{mapper_name}', entry.name))

	volumes.apply_encryption(containers)
	return volumes


def test_enable_runit_service(tmp_path: Path) -> None:
	(tmp_path / 'etc/runit/sv/iwd').mkdir(parents=True)

	enable_service(RecordingRunner(dry_run=False), InitSystem.Runit, 'iwd', tmp_path)

	link = tmp_path / 'etc/runit/runsvdir/default/iwd'
	assert link.is_symlink()
	assert os.readlink(link) == '/etc/runit/sv/iwd'


def test_enable_dinit_and_s6_services(tmp_path: Path) -> None:
	runner = RecordingRunner(dry_run=False)

	(tmp_path / 'etc/dinit.d').mkdir(parents=True)
	(tmp_path / 'etc/dinit.d/iwd').touch()
	enable_service(runner, InitSystem.Dinit, 'iwd', tmp_path)
	assert os.readlink(tmp_path / 'etc/dinit.d/boot.d/iwd') == '/etc/dinit.d/iwd'

	(tmp_path / 'etc/s6/sv/seatd').mkdir(parents=True)
	enable_service(runner, InitSystem.S6, 'seatd', tmp_path)
	assert (tmp_path / 'etc/s6/adminsv/default/contents.d/seatd').exists()

	assert runner.commands == []


def test_enable_openrc_service(tmp_path: Path) -> None:
	(tmp_path / 'etc/init.d').mkdir(parents=True)
	(tmp_path / 'etc/init.d/NetworkManager').touch()
	runner = RecordingRunner(dry_run=False)

	enable_service(runner, InitSystem.OpenRC, 'NetworkManager', tmp_path)

	assert runner.chroot_commands == ['rc-update add NetworkManager default']


def test_missing_service_is_skipped(tmp_path: Path) -> None:
	runner = RecordingRunner(dry_run=False)

	enable_service(runner, InitSystem.OpenRC, 'sddm', tmp_path)

	assert runner.commands == []
	assert not (tmp_path / 'etc/runlevels').exists()


@pytest.mark.parametrize(
	'init, files',
	[
		(InitSystem.Runit, ['etc/runit/sv/zram/run', 'etc/runit/sv/zram/finish']),
		(InitSystem.OpenRC, ['etc/init.d/zram']),
		(InitSystem.S6, ['etc/s6/sv/zram/up', 'etc/s6/sv/zram/type']),
		(InitSystem.Dinit, ['etc/dinit.d/zram']),
	],
)
def test_zram_service_files(tmp_path: Path, init: InitSystem, files: list[str]) -> None:
	config = DiskConfiguration(swap_type=SwapType.ZramOnly, zram_percent=25, zram_algorithm='lz4')

	configure_swap(RecordingRunner(dry_run=False), config, init, tmp_path)

	setup = tmp_path / 'usr/local/bin/zram-setup'
	assert setup.stat().st_mode & 0o777 == 0o755
	assert 'RAM_KB * 25 / 100 * 1024' in setup.read_text()
	assert 'echo lz4 > /sys/block/zram0/comp_algorithm' in setup.read_text()

	for path in files:
		assert (tmp_path / path).exists()


def test_swap_file_on_ext4(tmp_path: Path) -> None:
	runner = RecordingRunner(dry_run=False)
	config = DiskConfiguration(filesystem=FilesystemType.Ext4, swap_type=SwapType.FileZram, swap_file_size_mib=2048)

	create_swap_file(runner, config, tmp_path)

	swap_file = str(tmp_path / 'swap/swapfile')
	assert (tmp_path / 'swap').is_dir()
	assert runner.commands == [
		['fallocate', '-l', '2048M', swap_file],
		['chmod', '600', swap_file],
		['mkswap', swap_file],
	]


def test_swap_file_btrfs_fallback(runner: RecordingRunner) -> None:
	runner.failures = ['mkswapfile']
	config = DiskConfiguration(swap_type=SwapType.FileZram, swap_file_size_mib=1024)

	create_swap_file(runner, config, Path('/install'))

	assert runner.programs == ['btrfs', 'touch', 'chattr', 'fallocate', 'chmod', 'mkswap']
	assert runner.rendered[2] == 'chattr +C /install/swap/swapfile'


def test_swap_file_btrfs(runner: RecordingRunner) -> None:
	config = DiskConfiguration(swap_type=SwapType.FileZram, swap_file_size_mib=1024)

	create_swap_file(runner, config, Path('/install'))

	assert runner.rendered == ['btrfs filesystem mkswapfile --size 1024m /install/swap/swapfile']


def test_custom_hooks(tmp_path: Path, deployment_config: DeploymentConfig) -> None:
	volumes = _encrypted_volumes(deployment_config)

	install_custom_hooks(RecordingRunner(dry_run=False), volumes, tmp_path)

	hooks = tmp_path / 'usr/lib/initcpio/hooks'
	install = tmp_path / 'usr/lib/initcpio/install'

	for name in ('crypttab-unlock', 'mountcrypt'):
		assert (hooks / name).stat().st_mode & 0o777 == 0o755
		assert (install / name).read_text().startswith('#!/bin/bash')

	mountcrypt = (hooks / 'mountcrypt').read_text()
	assert 'cryptroot="/dev/mapper/Crypt-Root"' in mountcrypt
	assert 'mount -o rw,subvol=@ "$cryptroot" "$new_root"' in mountcrypt
	assert 'mount -o rw "/dev/mapper/Crypt-Usr" "$new_root/usr"' in mountcrypt
	assert '{' in mountcrypt and '{{' not in mountcrypt


def test_configure_system(tmp_path: Path, deployment_config: DeploymentConfig) -> None:
	runner = RecordingRunner(dry_run=False)
	volumes = _encrypted_volumes(deployment_config)

	configure_system(runner, deployment_config, volumes, tmp_path)

	assert (tmp_path / 'etc/locale.gen').read_text() == 'de_DE.UTF-8 UTF-8\n'
	assert (tmp_path / 'etc/locale.conf').read_text() == 'LANG=de_DE.UTF-8\n'
	assert (tmp_path / 'etc/vconsole.conf').read_text() == 'KEYMAP=de-latin1\n'
	assert (tmp_path / 'etc/hostname').read_text() == 'artix-test\n'
	assert (tmp_path / 'etc/sudoers.d/10-wheel').stat().st_mode & 0o777 == 0o440

	grub = (tmp_path / 'etc/default/grub').read_text()
	assert 'GRUB_CMDLINE_LINUX_DEFAULT="quiet root=/dev/mapper/Crypt-Root rootflags=subvol=@ rw"' in grub
	assert 'GRUB_ENABLE_CRYPTODISK' not in grub

	assert runner.chroot_commands[:4] == [
		'ln -sf /usr/share/zoneinfo/Europe/Berlin /etc/localtime',
		'hwclock --systohc',
		'locale-gen',
		'useradd -m -G wheel,video -s /bin/bash tester',
	]
	assert runner.chroot_commands[-2].startswith('grub-install --target=x86_64-efi')


def test_systemd_boot(tmp_path: Path, custom_config: DeploymentConfig) -> None:
	runner = RecordingRunner(dry_run=False)
	volumes = _encrypted_volumes(custom_config)

	install_bootloader(runner, custom_config, volumes, tmp_path)

	assert runner.chroot_commands == ['bootctl install']
	entry = (tmp_path / 'boot/efi/loader/entries/artix.conf').read_text()
	assert 'options quiet root=/dev/mapper/Crypt-Root rw\n' in entry


def test_systemd_boot_rejects_encrypted_boot(runner: RecordingRunner, custom_config: DeploymentConfig) -> None:
	custom_config.disk.boot_encryption = True

	with pytest.raises(ConfigError):
		install_bootloader(runner, custom_config, _encrypted_volumes(custom_config), Path('/install'))

	assert runner.commands == []


def test_secureboot(lvm_thin_config: DeploymentConfig) -> None:
	runner = RecordingRunner(failures=['enroll-keys'])

	setup_secureboot(runner, lvm_thin_config, Path('/install'))

	assert runner.chroot_commands == [
		'sbctl create-keys',
		'sbctl sign -s /boot/efi/EFI/BOOT/BOOTX64.EFI',
		'sbctl sign -s /boot/vmlinuz-linux-zen',
		'sbctl enroll-keys --microsoft',
	]

	lvm_thin_config.system.bootloader = Bootloader.SystemdBoot
	assert '/boot/efi/EFI/systemd/systemd-bootx64.efi' in efi_binaries(lvm_thin_config)


def test_secureboot_disabled(runner: RecordingRunner, deployment_config: DeploymentConfig) -> None:
	setup_secureboot(runner, deployment_config, Path('/install'))

	assert runner.commands == []


def test_install_desktop(runner: RecordingRunner, lvm_thin_config: DeploymentConfig, deployment_config: DeploymentConfig) -> None:
	install_desktop(runner, deployment_config, Path('/install'))
	assert runner.commands == []

	install_desktop(runner, lvm_thin_config, Path('/install'))
	assert runner.chroot_commands == ['pacman -S --noconfirm --needed plasma-desktop konsole dolphin kate sddm sddm-openrc']
