from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ..exceptions import ChrootError
from ..general import CommandRunner
from ..models.system import Bootloader
from ..output import info, warn

if TYPE_CHECKING:
	from ..args import DeploymentConfig

KERNEL_IMAGE = '/boot/vmlinuz-linux-zen'


def efi_binaries(config: DeploymentConfig) -> list[str]:
	binaries = ['/boot/efi/EFI/BOOT/BOOTX64.EFI']

	if config.system.bootloader == Bootloader.SystemdBoot:
		binaries.append('/boot/efi/EFI/systemd/systemd-bootx64.efi')

	binaries.append(KERNEL_IMAGE)
	return binaries


def setup_secureboot(runner: CommandRunner, config: DeploymentConfig, install_root: Path) -> None:
	"""
	Creates SecureBoot keys with sbctl and signs the bootloader and kernel.
	sbctl -s saves every signed file so its pacman hook re-signs them on
	updates. Key enrollment needs the firmware in setup mode, so a failure
	there is only reported.
	"""
	if not config.system.secureboot:
		return

	info('Setting up SecureBoot with sbctl')
	runner.run_in_chroot(install_root, 'sbctl create-keys')

	for binary in efi_binaries(config):
		runner.run_in_chroot(install_root, f'sbctl sign -s {binary}')

	try:
		runner.run_in_chroot(install_root, 'sbctl enroll-keys --microsoft')
	except ChrootError as err:
		warn(f'Key enrollment failed, run "sbctl enroll-keys --microsoft" after rebooting in setup mode: {err}')

	info('SecureBoot setup complete')
