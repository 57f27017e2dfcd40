from __future__ import annotations

from pathlib import Path

from ..args import DeploymentConfig
from ..general import CommandRunner
from ..models.desktop import DesktopEnvironment
from ..models.system import Bootloader
from ..output import info

BASE_PACKAGES = ['base', 'base-devel']
KERNEL_PACKAGES = ['linux-firmware', 'linux-zen', 'linux-zen-headers']
TOOL_PACKAGES = ['nano', 'curl', 'mkinitcpio', 'openssl', 'efibootmgr']


def build_package_list(config: DeploymentConfig) -> list[str]:
	init = config.system.init
	disk = config.disk

	packages = [*BASE_PACKAGES, init.base_package, 'elogind-' + init.value]
	packages += KERNEL_PACKAGES
	packages += TOOL_PACKAGES

	if fs_pkg := disk.filesystem.installation_pkg:
		packages.append(fs_pkg)

	# the EFI partition is always vfat
	packages.append('dosfstools')

	match config.system.bootloader:
		case Bootloader.Grub:
			packages.append('grub')
		case Bootloader.SystemdBoot:
			pass

	for pkg in config.network.backend.packages:
		packages.append(pkg)

	for service in config.network.backend.services:
		packages.append(init.service_package(service.lower()))

	if disk.encryption or disk.boot_encryption:
		packages.append('cryptsetup')

	if disk.uses_lvm_thin:
		packages += ['lvm2', 'thin-provisioning-tools']

	if config.desktop.environment != DesktopEnvironment.NoDesktop:
		packages += ['xorg-server', 'xorg-xinit', 'seatd', init.service_package('seatd')]

	if config.system.secureboot:
		packages.append('sbctl')

	# de-duplicate, keeping the order
	return list(dict.fromkeys(packages))


def run_basestrap(runner: CommandRunner, config: DeploymentConfig, install_root: Path) -> None:
	packages = build_package_list(config)

	info(f'Installing {len(packages)} packages with basestrap')

	runner.run('basestrap', [str(install_root), *packages])
