"""Artix Linux deployment - layout planning, storage provisioning and installation"""

from .lib.args import ConfigHandler, DeploymentConfig
from .lib.installer import Installer
from .lib.output import FormattedOutput, debug, error, info, log, warn
from .main import main


def run_as_a_module() -> None:
	exit(main())


__all__ = [
	'ConfigHandler',
	'DeploymentConfig',
	'FormattedOutput',
	'Installer',
	'debug',
	'error',
	'info',
	'log',
	'main',
	'run_as_a_module',
	'warn',
]
