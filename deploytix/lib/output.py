import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class FormattedOutput:
	@staticmethod
	def _row(o: Any) -> dict[str, Any]:
		if hasattr(o, 'table_data'):
			return o.table_data()
		if is_dataclass(o) and not isinstance(o, type):
			return asdict(o)

		raise ValueError(f'{type(o).__name__} cannot be shown as a table')

	@classmethod
	def as_table(cls, obj: list[Any], columns: list[str] | None = None) -> str:
		"""
		Formats a list of records as a table, one record per line.
		Records provide their cells through table_data() or are plain
		dataclasses. Numbers are right aligned, columns starting with a
		bang (!) have their values masked.
		"""
		rows = [cls._row(o) for o in obj]

		if columns is None:
			columns = list(dict.fromkeys(key for row in rows for key in row))

		width = {col: max([len(col.lstrip('!'))] + [len(str(row.get(col, ''))) for row in rows]) for col in columns}

		header = ' | '.join(col.lstrip('!').replace('_', ' ').ljust(width[col]) for col in columns)
		lines = [header, '-' * len(header)]

		for row in rows:
			cells = []
			for col in columns:
				value = row.get(col, '')
				text = '*' * len(str(value)) if col.startswith('!') else str(value)

				if isinstance(value, int | float) and not col.startswith('!'):
					cells.append(text.rjust(width[col]))
				else:
					cells.append(text.ljust(width[col]))

			lines.append(' | '.join(cells).rstrip())

		return '\n'.join(lines) + '\n'


class Logger:
	def __init__(self, path: Path = Path('/var/log/deploytix')) -> None:
		self._path = path
		self.verbose = False

	@property
	def path(self) -> Path:
		return self._path / 'install.log'

	@property
	def directory(self) -> Path:
		return self._path

	def _check_permissions(self) -> None:
		log_file = self.path

		try:
			self._path.mkdir(exist_ok=True, parents=True)
			log_file.touch(exist_ok=True)
		except PermissionError:
			# the installer is usually root, a plain user gets the log in the working directory
			self._path = Path('./').absolute()
			warn(f'Not enough permission to place log file at {log_file}, creating it in {self.path} instead')

	def log(self, level: int, content: str) -> None:
		self._check_permissions()

		with self.path.open('a') as f:
			f.write(f'[{_timestamp()}] - {logging.getLevelName(level)} - {content}\n')


logger = Logger()


def _supports_color() -> bool:
	if 'NO_COLOR' in os.environ:
		return False

	return hasattr(sys.stdout, 'isatty') and sys.stdout.isatty()


class Font(Enum):
	bold = '1'
	italic = '3'
	underscore = '4'


_COLORS = {
	'black': '0',
	'red': '1',
	'green': '2',
	'yellow': '3',
	'blue': '4',
	'magenta': '5',
	'cyan': '6',
	'white': '7',
	'orange': '8;5;208',
	'gray': '8;5;246',
}


def _stylize_output(
	text: str,
	fg: str,
	bg: str | None,
	reset: bool,
	font: list[Font] = [],
) -> str:
	if text == '' and reset:
		return '\x1b[0m'

	codes = [f'3{_COLORS[fg]}']

	if bg:
		codes.append(f'4{_COLORS[bg]}')

	codes += [f.value for f in font]

	return f'\033[{";".join(codes)}m{text}\033[0m'


def _timestamp() -> str:
	return datetime.now(tz=UTC).strftime('%Y-%m-%d %H:%M:%S')


def info(
	*msgs: str,
	level: int = logging.INFO,
	fg: str = 'white',
	bg: str | None = None,
	reset: bool = False,
	font: list[Font] = [],
) -> None:
	log(*msgs, level=level, fg=fg, bg=bg, reset=reset, font=font)


def debug(
	*msgs: str,
	level: int = logging.DEBUG,
	fg: str = 'gray',
	bg: str | None = None,
	reset: bool = False,
	font: list[Font] = [],
) -> None:
	log(*msgs, level=level, fg=fg, bg=bg, reset=reset, font=font)


def error(
	*msgs: str,
	level: int = logging.ERROR,
	fg: str = 'red',
	bg: str | None = None,
	reset: bool = False,
	font: list[Font] = [],
) -> None:
	log(*msgs, level=level, fg=fg, bg=bg, reset=reset, font=font)


def warn(
	*msgs: str,
	level: int = logging.WARNING,
	fg: str = 'yellow',
	bg: str | None = None,
	reset: bool = False,
	font: list[Font] = [],
) -> None:
	log(*msgs, level=level, fg=fg, bg=bg, reset=reset, font=font)


def log_dry_run(*msgs: str) -> None:
	"""Reports an action that was skipped because of --dry-run"""
	log('  [dry-run]', *msgs, fg='blue')


def progress(fraction: float, label: str) -> None:
	log(f'[{int(fraction * 100):3d}%] {label}', fg='cyan', font=[Font.bold])


def log(
	*msgs: str,
	level: int = logging.INFO,
	fg: str = 'white',
	bg: str | None = None,
	reset: bool = False,
	font: list[Font] = [],
) -> None:
	text = ' '.join([str(x) for x in msgs])

	logger.log(level, text)

	if level == logging.DEBUG and not logger.verbose:
		return

	if _supports_color():
		text = _stylize_output(text, fg, bg, reset, font)

	print(text)
