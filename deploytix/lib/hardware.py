from functools import cached_property
from pathlib import Path

from .output import debug

DEFAULT_RAM_MIB = 8192


class _SysInfo:
	def __init__(self, meminfo_path: Path = Path('/proc/meminfo')) -> None:
		self._meminfo_path = meminfo_path

	@cached_property
	def mem_info(self) -> dict[str, int]:
		"""
		Returns system memory information in kB
		"""
		mem_info: dict[str, int] = {}

		with self._meminfo_path.open() as file:
			for line in file:
				key, value = line.strip().split(':', 1)
				num = value.split()[0]
				mem_info[key] = int(num)

		return mem_info

	def mem_info_by_key(self, key: str) -> int:
		return self.mem_info[key]


_sys_info = _SysInfo()


class SysInfo:
	@staticmethod
	def mem_total() -> int:
		return _sys_info.mem_info_by_key('MemTotal')

	@staticmethod
	def ram_mib() -> int:
		try:
			return SysInfo.mem_total() // 1024
		except (OSError, KeyError, ValueError, IndexError) as err:
			debug(f'Could not read memory information, assuming {DEFAULT_RAM_MIB} MiB: {err}')
			return DEFAULT_RAM_MIB
