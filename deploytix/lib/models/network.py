from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict

from ..exceptions import ConfigError


class NetworkBackend(Enum):
	Iwd = 'iwd'
	NetworkManager = 'networkmanager'

	@property
	def packages(self) -> list[str]:
		match self:
			case NetworkBackend.Iwd:
				return ['iwd']
			case NetworkBackend.NetworkManager:
				return ['networkmanager', 'iwd']

	@property
	def services(self) -> list[str]:
		match self:
			case NetworkBackend.Iwd:
				return ['iwd']
			case NetworkBackend.NetworkManager:
				return ['NetworkManager', 'iwd']


class _NetworkConfigurationSerialization(TypedDict):
	backend: str


@dataclass
class NetworkConfiguration:
	backend: NetworkBackend = NetworkBackend.Iwd

	def json(self) -> _NetworkConfigurationSerialization:
		return {'backend': self.backend.value}

	@classmethod
	def parse_arg(cls, arg: dict) -> NetworkConfiguration:  # type: ignore[type-arg]
		try:
			return NetworkConfiguration(NetworkBackend(arg.get('backend', NetworkBackend.Iwd.value)))
		except ValueError as err:
			raise ConfigError(f'Invalid network configuration: {err}') from err
