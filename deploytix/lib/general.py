from __future__ import annotations

import json
import os
import shlex
import stat
import subprocess
import time
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from shutil import which
from typing import Any, override

from .exceptions import ChrootError, CommandFailed, CommandNotFound, Interrupted, NotRoot, RequirementError
from .interrupt import InterruptToken
from .output import debug, log_dry_run, warn
from .storage import storage


def locate_binary(name: str) -> str:
	if path := which(name):
		return path
	raise RequirementError(name)


def require_root() -> None:
	if os.geteuid() != 0:
		raise NotRoot()


def jsonify(obj: Any, safe: bool = True) -> Any:
	"""
	Converts objects into json.dumps() compatible nested dictionaries.
	Setting safe to True skips dictionary keys starting with a bang (!)
	"""

	compatible_types = str, int, float, bool
	if isinstance(obj, dict):
		return {
			key: jsonify(value, safe)
			for key, value in obj.items()
			if isinstance(key, compatible_types)
			and not (isinstance(key, str) and key.startswith('!') and safe)
		}
	if isinstance(obj, Enum):
		return obj.value
	if hasattr(obj, 'json'):
		return jsonify(obj.json(), safe)
	if isinstance(obj, datetime | date):
		return obj.isoformat()
	if isinstance(obj, list | set | tuple):
		return [jsonify(item, safe) for item in obj]
	if isinstance(obj, Path):
		return str(obj)

	return obj


class JSON(json.JSONEncoder, json.JSONDecoder):
	"""
	A safe JSON encoder that will omit private information in dicts (starting with !)
	"""

	@override
	def encode(self, o: Any) -> str:
		return super().encode(jsonify(o))


def _log_cmd(cmd: list[str]) -> None:
	history_logfile = Path(f"{storage['LOG_PATH']}/cmd_history.txt")

	change_perm = False
	if history_logfile.exists() is False:
		change_perm = True

	try:
		with history_logfile.open('a') as cmd_log:
			cmd_log.write(f'{time.time()} {cmd}\n')

		if change_perm:
			history_logfile.chmod(stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP)
	except (PermissionError, FileNotFoundError):
		# If history_logfile does not exist, ignore the error
		pass


def run(
	cmd: list[str],
	input_data: bytes | None = None,
) -> subprocess.CompletedProcess[bytes]:
	_log_cmd(cmd)

	return subprocess.run(
		cmd,
		input=input_data,
		stdout=subprocess.PIPE,
		stderr=subprocess.PIPE,
		check=True,
	)


@dataclass
class ExecutionOutcome:
	command: list[str]
	exit_code: int = 0
	stdout: bytes = b''
	stderr: bytes = b''
	dry_run: bool = False

	def decode(self, encoding: str = 'utf-8', strip: bool = True) -> str:
		output = self.stdout.decode(encoding, errors='backslashreplace')
		return output.strip() if strip else output


class CommandRunner:
	"""
	Single entry point for every external command issued during an
	installation. In dry-run mode commands are only logged; otherwise
	they are executed and a non-zero exit is raised as CommandFailed.

	Before each regular command the interrupt token is consulted so a
	phase stops as soon as the user has asked to; force_run() skips that
	check and is reserved for cleanup.
	"""

	def __init__(self, dry_run: bool = False, token: InterruptToken | None = None) -> None:
		self.dry_run = dry_run
		self.token = token or InterruptToken()
		self._chroot_binary: str | None = None

	def is_dry_run(self) -> bool:
		return self.dry_run

	def run(self, program: str, args: list[str] | None = None, input_data: bytes | None = None) -> ExecutionOutcome:
		self._check_interrupted()
		return self._execute([program, *(args or [])], input_data)

	def force_run(self, program: str, args: list[str] | None = None, input_data: bytes | None = None) -> ExecutionOutcome:
		return self._execute([program, *(args or [])], input_data)

	def run_in_chroot(self, root: Path | str, shell_command: str, input_data: bytes | None = None) -> ExecutionOutcome:
		self._check_interrupted()

		program = self._chroot_program()

		try:
			return self._execute([program, str(root), 'bash', '-c', shell_command], input_data)
		except CommandFailed as err:
			raise ChrootError(f'Command in {root} failed: {shell_command}: {err.stderr.strip()}') from err

	def _chroot_program(self) -> str:
		if self._chroot_binary is None:
			self._chroot_binary = 'artix-chroot' if which('artix-chroot') else 'chroot'
		return self._chroot_binary

	def _check_interrupted(self) -> None:
		if self.token.interrupted:
			raise Interrupted(self.token.signum)

	def _execute(self, cmd: list[str], input_data: bytes | None) -> ExecutionOutcome:
		cmd_str = shlex.join(cmd)

		if self.dry_run:
			log_dry_run(cmd_str)
			return ExecutionOutcome(cmd, dry_run=True)

		debug(f'Running: {cmd_str}')

		try:
			result = run(cmd, input_data=input_data)
		except FileNotFoundError as err:
			raise CommandNotFound(cmd[0]) from err
		except subprocess.CalledProcessError as err:
			stderr = (err.stderr or b'').decode(errors='backslashreplace')
			warn(f'Command failed: {cmd_str}\n  stderr: {stderr.strip()}')
			raise CommandFailed(cmd_str, stderr, err.returncode) from err

		return ExecutionOutcome(cmd, result.returncode, result.stdout or b'', result.stderr or b'')


def write_file(runner: CommandRunner, path: Path, content: str, mode: int | None = None) -> None:
	"""
	Writes a file into the installation target, only logs the write
	when the runner is in dry-run mode.
	"""
	if runner.is_dry_run():
		log_dry_run(f'write {path}')
		debug(content)
		return

	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(content)

	if mode is not None:
		path.chmod(mode)
