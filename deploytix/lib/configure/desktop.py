from __future__ import annotations

import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from ..general import CommandRunner
from ..models.desktop import DesktopEnvironment
from ..output import info
from .services import enable_service

if TYPE_CHECKING:
	from ..args import DeploymentConfig


def desktop_packages(config: DeploymentConfig) -> list[str]:
	desktop = config.desktop

	if desktop.environment == DesktopEnvironment.NoDesktop:
		return []

	packages = list(desktop.environment.packages)

	if display_manager := desktop.resolved_display_manager:
		packages += [display_manager, config.system.init.service_package(display_manager)]

	return list(dict.fromkeys(packages))


def install_desktop(runner: CommandRunner, config: DeploymentConfig, install_root: Path) -> None:
	if not (packages := desktop_packages(config)):
		info('No desktop environment selected')
		return

	info(f'Installing desktop environment: {config.desktop.environment.value}')
	runner.run_in_chroot(install_root, f'pacman -S --noconfirm --needed {shlex.join(packages)}')

	if display_manager := config.desktop.resolved_display_manager:
		enable_service(runner, config.system.init, display_manager, install_root)
