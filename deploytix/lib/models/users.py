from __future__ import annotations

from dataclasses import dataclass, field
from typing import NotRequired, TypedDict

DEFAULT_GROUPS = ['wheel', 'video', 'audio', 'network', 'log']

UserSerialization = TypedDict(
	'UserSerialization',
	{
		'name': str,
		'groups': list[str],
		'sudoer': bool,
		'!password': NotRequired[str],
	},
)


@dataclass
class User:
	name: str = ''
	password: str = ''
	groups: list[str] = field(default_factory=lambda: list(DEFAULT_GROUPS))
	sudoer: bool = True

	def json(self) -> UserSerialization:
		return {
			'name': self.name,
			'groups': self.groups,
			'sudoer': self.sudoer,
		}

	def unsafe_json(self) -> UserSerialization:
		user = self.json()
		user['!password'] = self.password
		return user

	def validate(self) -> str | None:
		if not self.name:
			return 'User name cannot be empty'

		if ' ' in self.name:
			return f'User name cannot contain spaces: "{self.name}"'

		if not self.password:
			return f'No password set for user {self.name}'

		return None

	@classmethod
	def parse_arg(cls, arg: dict) -> User:  # type: ignore[type-arg]
		# plain "password" is accepted for hand written configuration files
		password = arg.get('!password', None) or arg.get('password', '')

		user = User(
			name=arg.get('name', ''),
			password=password,
			sudoer=arg.get('sudoer', True),
		)

		if (groups := arg.get('groups', None)) is not None:
			user.groups = groups

		return user
