import os
import signal
import subprocess
from pathlib import Path

import pytest
from pytest import MonkeyPatch

from deploytix.lib import general
from deploytix.lib.exceptions import ChrootError, CommandFailed, CommandNotFound, Interrupted, RequirementError
from deploytix.lib.general import CommandRunner, jsonify, locate_binary, write_file
from deploytix.lib.interrupt import InterruptToken, SignalListener, reraise


def test_dry_run_executes_nothing(monkeypatch: MonkeyPatch) -> None:
	def _fail(*args: object, **kwargs: object) -> None:
		raise AssertionError('dry-run must not execute commands')

	monkeypatch.setattr(general, 'run', _fail)

	runner = CommandRunner(dry_run=True)
	outcome = runner.run('wipefs', ['-a', '/dev/sda'])

	assert outcome.dry_run
	assert outcome.command == ['wipefs', '-a', '/dev/sda']
	assert outcome.decode() == ''


def test_run_returns_output(monkeypatch: MonkeyPatch) -> None:
	def _run(cmd: list[str], input_data: bytes | None = None) -> subprocess.CompletedProcess[bytes]:
		return subprocess.CompletedProcess(cmd, 0, stdout=b'1234-abcd\n', stderr=b'')

	monkeypatch.setattr(general, 'run', _run)

	outcome = CommandRunner().run('blkid', ['-s', 'UUID', '-o', 'value', '/dev/sda1'])

	assert outcome.exit_code == 0
	assert outcome.decode() == '1234-abcd'
	assert not outcome.dry_run


def test_run_wraps_failures(monkeypatch: MonkeyPatch) -> None:
	def _run(cmd: list[str], input_data: bytes | None = None) -> subprocess.CompletedProcess[bytes]:
		raise subprocess.CalledProcessError(32, cmd, output=b'', stderr=b'target is busy\n')

	monkeypatch.setattr(general, 'run', _run)

	with pytest.raises(CommandFailed) as exc_info:
		CommandRunner().run('umount', ['/install'])

	assert exc_info.value.command == 'umount /install'
	assert exc_info.value.exit_code == 32
	assert 'target is busy' in exc_info.value.stderr


def test_missing_program(monkeypatch: MonkeyPatch) -> None:
	def _run(cmd: list[str], input_data: bytes | None = None) -> subprocess.CompletedProcess[bytes]:
		raise FileNotFoundError(cmd[0])

	monkeypatch.setattr(general, 'run', _run)

	with pytest.raises(CommandNotFound) as exc_info:
		CommandRunner().run('basestrap', ['/install', 'base'])

	assert exc_info.value.program == 'basestrap'


def test_real_command_passes_stdin() -> None:
	outcome = CommandRunner().run('cat', [], input_data=b'secret\n')

	assert outcome.stdout == b'secret\n'


def test_interrupted_runner_refuses_commands(monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(general, 'run', lambda cmd, input_data=None: subprocess.CompletedProcess(cmd, 0, b'', b''))

	token = InterruptToken()
	runner = CommandRunner(token=token)
	token.set(signal.SIGINT)

	with pytest.raises(Interrupted) as exc_info:
		runner.run('mkfs.ext4', ['/dev/sda4'])

	assert exc_info.value.signum == signal.SIGINT

	with pytest.raises(Interrupted):
		runner.run_in_chroot('/install', 'locale-gen')

	# cleanup keeps working after an interrupt
	assert runner.force_run('umount', ['/install']).exit_code == 0


def test_chroot_failures(monkeypatch: MonkeyPatch) -> None:
	def _run(cmd: list[str], input_data: bytes | None = None) -> subprocess.CompletedProcess[bytes]:
		raise subprocess.CalledProcessError(1, cmd, output=b'', stderr=b'no such user\n')

	monkeypatch.setattr(general, 'run', _run)

	runner = CommandRunner()
	runner._chroot_binary = 'artix-chroot'

	with pytest.raises(ChrootError) as exc_info:
		runner.run_in_chroot('/install', 'passwd -l nobody')

	assert 'passwd -l nobody' in str(exc_info.value)
	assert isinstance(exc_info.value.__cause__, CommandFailed)


def test_chroot_command_shape(runner_factory: type) -> None:
	runner = runner_factory(dry_run=False)
	runner.run_in_chroot(Path('/install'), 'mkinitcpio -P')

	assert runner.commands == [['artix-chroot', '/install', 'bash', '-c', 'mkinitcpio -P']]


def test_commands_without_arguments(runner_factory: type) -> None:
	runner = runner_factory(dry_run=False)

	runner.run('udevadm')
	runner.force_run('sync')
	runner.run('swapoff', ['-a'])
	runner.force_run('partprobe')

	# every call starts from its own argument list
	assert runner.commands == [['udevadm'], ['sync'], ['swapoff', '-a'], ['partprobe']]


def test_write_file(tmp_path: Path) -> None:
	target = tmp_path / 'etc' / 'hostname'

	write_file(CommandRunner(), target, 'artix\n', mode=0o600)

	assert target.read_text() == 'artix\n'
	assert target.stat().st_mode & 0o777 == 0o600


def test_write_file_dry_run(tmp_path: Path) -> None:
	target = tmp_path / 'etc' / 'hostname'

	write_file(CommandRunner(dry_run=True), target, 'artix\n')

	assert not target.exists()


def test_locate_binary() -> None:
	assert locate_binary('sh')

	with pytest.raises(RequirementError):
		locate_binary('deploytix-does-not-exist')


def test_jsonify_hides_secrets() -> None:
	data = {'name': 'tester', '!password': 'hunter2', 'nested': {'!key': 'x', 'path': Path('/install')}}

	assert jsonify(data) == {'name': 'tester', 'nested': {'path': '/install'}}
	assert jsonify(data, safe=False)['!password'] == 'hunter2'


def test_token() -> None:
	token = InterruptToken()
	assert not token.interrupted
	assert token.signum is None

	token.set(signal.SIGTERM)
	token.set(signal.SIGINT)

	assert token.interrupted
	# the first signal is the one that is re-raised later
	assert token.signum == signal.SIGTERM

	token.clear()
	assert not token.interrupted


def test_first_signal_sets_token(monkeypatch: MonkeyPatch) -> None:
	written: list[bytes] = []
	monkeypatch.setattr(os, 'write', lambda fd, data: written.append(data) or len(data))

	token = InterruptToken()
	listener = SignalListener(token)
	listener._handle(signal.SIGINT, None)

	assert token.interrupted
	assert token.signum == signal.SIGINT
	assert written == [b'\nInterrupt received, cleaning up...\n']


def test_second_signal_forces_exit(monkeypatch: MonkeyPatch) -> None:
	written: list[bytes] = []
	killed: list[tuple[int, int]] = []
	handlers: dict[int, object] = {}

	monkeypatch.setattr(os, 'write', lambda fd, data: written.append(data) or len(data))
	monkeypatch.setattr(os, 'kill', lambda pid, signum: killed.append((pid, signum)))
	monkeypatch.setattr(signal, 'signal', lambda signum, handler: handlers.setdefault(signum, handler))

	listener = SignalListener(InterruptToken())
	listener._handle(signal.SIGTERM, None)
	listener._handle(signal.SIGTERM, None)

	assert written[-1] == b'\nForced exit - cleanup may be incomplete. Run: deploytix cleanup\n'
	assert handlers[signal.SIGTERM] == signal.SIG_DFL
	assert killed == [(os.getpid(), signal.SIGTERM)]


def test_install_and_restore_handlers() -> None:
	previous = signal.getsignal(signal.SIGTERM)

	listener = SignalListener(InterruptToken(), signals=(signal.SIGTERM,))
	listener.install()
	assert signal.getsignal(signal.SIGTERM) == listener._handle

	listener.restore()
	assert signal.getsignal(signal.SIGTERM) == previous


def test_reraise_without_signal(monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr(os, 'kill', lambda pid, signum: pytest.fail('nothing to re-raise'))

	reraise(InterruptToken())
