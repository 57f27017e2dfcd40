from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NotRequired, TypedDict

from ..exceptions import ConfigError


class DesktopEnvironment(Enum):
	NoDesktop = 'none'
	Kde = 'kde'
	Gnome = 'gnome'
	Xfce = 'xfce'

	@property
	def packages(self) -> list[str]:
		match self:
			case DesktopEnvironment.NoDesktop:
				return []
			case DesktopEnvironment.Kde:
				return ['plasma-desktop', 'konsole', 'dolphin', 'kate']
			case DesktopEnvironment.Gnome:
				return ['gnome', 'gnome-tweaks']
			case DesktopEnvironment.Xfce:
				return ['xfce4', 'xfce4-goodies']

	@property
	def default_display_manager(self) -> str | None:
		match self:
			case DesktopEnvironment.NoDesktop:
				return None
			case DesktopEnvironment.Kde:
				return 'sddm'
			case DesktopEnvironment.Gnome:
				return 'gdm'
			case DesktopEnvironment.Xfce:
				return 'lightdm'


class _DesktopConfigurationSerialization(TypedDict):
	environment: str
	display_manager: NotRequired[str]


@dataclass
class DesktopConfiguration:
	environment: DesktopEnvironment = DesktopEnvironment.NoDesktop
	display_manager: str | None = None

	@property
	def resolved_display_manager(self) -> str | None:
		return self.display_manager or self.environment.default_display_manager

	def json(self) -> _DesktopConfigurationSerialization:
		config: _DesktopConfigurationSerialization = {'environment': self.environment.value}

		if self.display_manager:
			config['display_manager'] = self.display_manager

		return config

	@classmethod
	def parse_arg(cls, arg: dict) -> DesktopConfiguration:  # type: ignore[type-arg]
		try:
			environment = DesktopEnvironment(arg.get('environment', DesktopEnvironment.NoDesktop.value))
		except ValueError as err:
			raise ConfigError(f'Invalid desktop configuration: {err}') from err

		return DesktopConfiguration(environment, arg.get('display_manager', None))
