from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from ..general import CommandRunner
from ..models.desktop import DesktopEnvironment
from ..models.system import InitSystem
from ..output import debug, info, log_dry_run

if TYPE_CHECKING:
	from ..args import DeploymentConfig


def build_service_list(config: DeploymentConfig) -> list[str]:
	services = list(config.network.backend.services)

	# the display manager is enabled once the desktop has been installed
	if config.desktop.environment != DesktopEnvironment.NoDesktop:
		services.append('seatd')

	return services


def _service_definition(init: InitSystem, service: str) -> Path:
	match init:
		case InitSystem.Runit:
			return Path(f'/etc/runit/sv/{service}')
		case InitSystem.OpenRC:
			return Path(f'/etc/init.d/{service}')
		case InitSystem.S6:
			return Path(f'/etc/s6/sv/{service}')
		case InitSystem.Dinit:
			return Path(f'/etc/dinit.d/{service}')


def enable_service(runner: CommandRunner, init: InitSystem, service: str, install_root: Path) -> None:
	info(f'Enabling service: {service} ({init.value})')

	if runner.is_dry_run():
		log_dry_run(f'enable {service} for {init.value}')
		return

	definition = _service_definition(init, service)

	if not (install_root / definition.relative_to('/')).exists():
		debug(f'Service {service} not found in {definition}, skipping')
		return

	match init:
		case InitSystem.Runit:
			enabled_dir = install_root / 'etc/runit/runsvdir/default'
			enabled_dir.mkdir(parents=True, exist_ok=True)

			if not (link := enabled_dir / service).exists():
				# the link is resolved inside the installed system
				os.symlink(definition, link)
		case InitSystem.OpenRC:
			runner.run_in_chroot(install_root, f'rc-update add {service} default')
		case InitSystem.S6:
			contents = install_root / 'etc/s6/adminsv/default/contents.d'
			contents.mkdir(parents=True, exist_ok=True)
			(contents / service).touch()
		case InitSystem.Dinit:
			boot_dir = install_root / 'etc/dinit.d/boot.d'
			boot_dir.mkdir(parents=True, exist_ok=True)

			if not (link := boot_dir / service).exists():
				os.symlink(definition, link)


def enable_services(runner: CommandRunner, config: DeploymentConfig, install_root: Path) -> None:
	for service in build_service_list(config):
		enable_service(runner, config.system.init, service, install_root)
