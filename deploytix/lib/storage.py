# Keeping this in a dict ensures that the values are shared across imports.
from typing import TYPE_CHECKING, NotRequired, TypedDict

if TYPE_CHECKING:
	from deploytix.lib.installer import Installer


class _StorageDict(TypedDict):
	LOG_PATH: str
	installation_session: NotRequired['Installer']


storage: _StorageDict = {
	'LOG_PATH': '/var/log/deploytix',
}
