from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict

from ..exceptions import ConfigError


class InitSystem(Enum):
	Runit = 'runit'
	OpenRC = 'openrc'
	S6 = 's6'
	Dinit = 'dinit'

	@property
	def base_package(self) -> str:
		return self.value

	def service_package(self, name: str) -> str:
		return f'{name}-{self.value}'


class Bootloader(Enum):
	Grub = 'grub'
	SystemdBoot = 'systemd-boot'


class _SystemConfigurationSerialization(TypedDict):
	init: str
	bootloader: str
	timezone: str
	locale: str
	keymap: str
	hostname: str
	hibernation: bool
	secureboot: bool


@dataclass
class SystemConfiguration:
	init: InitSystem = InitSystem.Runit
	bootloader: Bootloader = Bootloader.Grub
	timezone: str = 'UTC'
	locale: str = 'en_US.UTF-8'
	keymap: str = 'us'
	hostname: str = 'artix'
	hibernation: bool = False
	secureboot: bool = False

	def json(self) -> _SystemConfigurationSerialization:
		return {
			'init': self.init.value,
			'bootloader': self.bootloader.value,
			'timezone': self.timezone,
			'locale': self.locale,
			'keymap': self.keymap,
			'hostname': self.hostname,
			'hibernation': self.hibernation,
			'secureboot': self.secureboot,
		}

	@classmethod
	def parse_arg(cls, arg: dict) -> SystemConfiguration:  # type: ignore[type-arg]
		config = SystemConfiguration()

		try:
			if init := arg.get('init', None):
				config.init = InitSystem(init)

			if bootloader := arg.get('bootloader', None):
				config.bootloader = Bootloader(bootloader)
		except ValueError as err:
			raise ConfigError(f'Invalid system configuration: {err}') from err

		if timezone := arg.get('timezone', None):
			config.timezone = timezone

		if locale := arg.get('locale', None):
			config.locale = locale

		if keymap := arg.get('keymap', None):
			config.keymap = keymap

		if hostname := arg.get('hostname', None):
			config.hostname = hostname

		config.hibernation = arg.get('hibernation', False)
		config.secureboot = arg.get('secureboot', False)

		return config
