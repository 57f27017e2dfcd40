from __future__ import annotations

import argparse
import json
from argparse import ArgumentParser, Namespace
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

from pydantic.dataclasses import dataclass as p_dataclass

from .disk.layouts import validate_custom_partitions
from .exceptions import ConfigError, ValidationError
from .general import jsonify
from .models.desktop import DesktopConfiguration, DesktopEnvironment
from .models.device import DiskConfiguration, PartitionLayout
from .models.network import NetworkConfiguration
from .models.system import SystemConfiguration
from .models.users import User
from .output import error, logger, warn

SCRIPTS = ['install', 'cleanup', 'validate', 'list-disks', 'generate-config']


@p_dataclass
class Arguments:
	config: Path | None = None
	version: bool = False
	device: str | None = None
	dry_run: bool = False
	debug: bool = False
	silent: bool = False
	script: str | None = None
	wipe: bool = False
	all: bool = False
	output: Path | None = None
	mountpoint: Path = Path('/install')


@dataclass
class DeploymentConfig:
	disk: DiskConfiguration = field(default_factory=DiskConfiguration)
	system: SystemConfiguration = field(default_factory=SystemConfiguration)
	user: User = field(default_factory=User)
	network: NetworkConfiguration = field(default_factory=NetworkConfiguration)
	desktop: DesktopConfiguration = field(default_factory=DesktopConfiguration)
	version: str | None = None

	def safe_json(self) -> dict[str, Any]:
		return jsonify(self.unsafe_json(), safe=True)

	def unsafe_json(self) -> dict[str, Any]:
		disk: dict[str, Any] = dict(self.disk.json())

		if self.disk.encryption_password:
			disk['!encryption_password'] = self.disk.encryption_password

		return {
			'version': self.version,
			'disk': disk,
			'system': self.system.json(),
			'user': self.user.unsafe_json(),
			'network': self.network.json(),
			'desktop': self.desktop.json(),
		}

	def validate(self) -> None:
		if self.disk.device == '':
			raise ValidationError('No target device configured')

		if user_error := self.user.validate():
			raise ValidationError(user_error)

		if self.disk.encryption and not self.disk.encryption_password:
			raise ValidationError('Encryption password required when encryption is enabled')

		if self.disk.boot_encryption and not self.disk.encryption:
			raise ValidationError('Boot encryption requires encryption to be enabled')

		if not 1 <= self.disk.lvm_thin_pool_percent <= 100:
			raise ValidationError(f'Thin pool size must be between 1 and 100 percent, got {self.disk.lvm_thin_pool_percent}')

		if self.disk.layout == PartitionLayout.Custom:
			validate_custom_partitions(self.disk.custom_partitions, self.disk.encryption)

	@classmethod
	def sample(cls) -> DeploymentConfig:
		config = DeploymentConfig()
		config.disk.device = '/dev/sda'
		config.disk.encryption_password = 'changeme'
		config.disk.encryption = True
		config.disk.use_subvolumes = True
		config.user = User(name='artix', password='changeme')
		config.desktop.environment = DesktopEnvironment.Kde
		return config

	@classmethod
	def from_config(cls, args_config: dict[str, Any], args: Arguments | None = None) -> DeploymentConfig:
		config = DeploymentConfig()

		disk_config: dict[str, Any] = args_config.get('disk', {})
		enc_password = disk_config.get('!encryption_password', None) or disk_config.get('encryption_password', None)
		config.disk = DiskConfiguration.parse_arg(disk_config, enc_password)

		if system_config := args_config.get('system', None):
			config.system = SystemConfiguration.parse_arg(system_config)

		if user_config := args_config.get('user', None):
			config.user = User.parse_arg(user_config)

		if network_config := args_config.get('network', None):
			config.network = NetworkConfiguration.parse_arg(network_config)

		if desktop_config := args_config.get('desktop', None):
			config.desktop = DesktopConfiguration.parse_arg(desktop_config)

		# the command line overrides the target device of the configuration file
		if args is not None and args.device:
			config.disk.device = args.device

		return config


def get_version() -> str:
	try:
		return version('deploytix')
	except PackageNotFoundError:
		return 'Deploytix version not found'


class ConfigHandler:
	def __init__(self, argv: list[str] | None = None) -> None:
		self._parser: ArgumentParser = self._define_arguments()
		self._args: Arguments = self._parse_args(argv)

		config = self._parse_config()

		try:
			self._config = DeploymentConfig.from_config(config, self._args)
			self._config.version = get_version()
		except ConfigError as err:
			warn(str(err))
			exit(1)

	@property
	def config(self) -> DeploymentConfig:
		return self._config

	@property
	def args(self) -> Arguments:
		return self._args

	def get_script(self) -> str:
		script = self.args.script or 'install'
		return script.replace('-', '_')

	def print_help(self) -> None:
		self._parser.print_help()

	def _define_arguments(self) -> ArgumentParser:
		parser = ArgumentParser(prog='deploytix', formatter_class=argparse.ArgumentDefaultsHelpFormatter)
		parser.add_argument(
			'-v',
			'--version',
			action='version',
			default=False,
			version='%(prog)s ' + get_version(),
		)
		parser.add_argument(
			'--config',
			type=Path,
			nargs='?',
			default=None,
			help='JSON configuration file',
		)
		parser.add_argument(
			'--device',
			type=str,
			nargs='?',
			default=None,
			help='Target block device, overrides the device of the configuration file',
		)
		parser.add_argument(
			'--dry-run',
			'--dry_run',
			action='store_true',
			default=False,
			help='Print every command instead of executing it',
		)
		parser.add_argument(
			'--debug',
			action='store_true',
			default=False,
			help='Print debug messages in addition to writing them to the log',
		)
		parser.add_argument(
			'--silent',
			action='store_true',
			default=False,
			help='WARNING: Skips the confirmation before the target disk is erased',
		)
		parser.add_argument(
			'--script',
			nargs='?',
			type=str,
			choices=SCRIPTS,
			help='Script to run',
		)
		parser.add_argument(
			'--wipe',
			action='store_true',
			default=False,
			help='cleanup: also wipe the partition table of the target device',
		)
		parser.add_argument(
			'--all',
			action='store_true',
			default=False,
			help='list-disks: include loop devices, optical drives and mounted disks',
		)
		parser.add_argument(
			'--output',
			type=Path,
			nargs='?',
			default=None,
			help='generate-config: file to write the sample configuration to',
		)
		parser.add_argument(
			'--mountpoint',
			type=Path,
			nargs='?',
			default=Path('/install'),
			help='Mount point of the installation target',
		)

		return parser

	def _parse_args(self, argv: list[str] | None) -> Arguments:
		argparse_args = vars(self._parser.parse_args(argv))
		args: Arguments = Arguments(**argparse_args)

		# a silent installation needs a configuration file
		if args.config is None:
			args.silent = False

		if args.debug:
			logger.verbose = True
			warn(f'Warning: --debug mode will write certain credentials to {logger.path}!')

		return args

	def _parse_config(self) -> dict[str, Any]:
		config: dict[str, Any] = {}

		if self._args.config is not None:
			config_data = self._read_file(self._args.config)

			try:
				config.update(json.loads(config_data))
			except json.JSONDecodeError as err:
				error(f'Could not parse {self._args.config}: {err}')
				exit(1)

		return self._cleanup_config(config)

	def _read_file(self, path: Path) -> str:
		if not path.exists():
			error(f'Could not find file {path}')
			exit(1)

		return path.read_text()

	def _cleanup_config(self, config: Namespace | dict[str, Any]) -> dict[str, Any]:
		clean_args = {}
		for key, val in config.items():
			if isinstance(val, dict):
				val = self._cleanup_config(val)

			if val is not None:
				clean_args[key] = val

		return clean_args
