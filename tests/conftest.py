import json
import shlex
from pathlib import Path

import pytest

from deploytix.lib import output
from deploytix.lib.args import DeploymentConfig
from deploytix.lib.exceptions import CommandFailed
from deploytix.lib.general import CommandRunner, ExecutionOutcome
from deploytix.lib.interrupt import InterruptToken
from deploytix.lib.storage import storage


class RecordingRunner(CommandRunner):
	"""
	Command runner that records every command instead of executing it.
	Commands whose rendered form contains one of the failure patterns
	raise CommandFailed; stdout can be canned per program.
	"""

	def __init__(
		self,
		dry_run: bool = True,
		token: InterruptToken | None = None,
		outputs: dict[str, bytes] | None = None,
		failures: list[str] | None = None,
	) -> None:
		super().__init__(dry_run=dry_run, token=token)
		self._chroot_binary = 'artix-chroot'
		self.outputs = outputs or {}
		self.failures = failures or []
		self.commands: list[list[str]] = []
		self.inputs: list[bytes | None] = []

	def _execute(self, cmd: list[str], input_data: bytes | None) -> ExecutionOutcome:
		self.commands.append(cmd)
		self.inputs.append(input_data)

		cmd_str = shlex.join(cmd)

		for pattern in self.failures:
			if pattern in cmd_str:
				raise CommandFailed(cmd_str, 'simulated failure', 1)

		return ExecutionOutcome(cmd, stdout=self.outputs.get(cmd[0], b''), dry_run=self.dry_run)

	@property
	def rendered(self) -> list[str]:
		return [shlex.join(cmd) for cmd in self.commands]

	@property
	def programs(self) -> list[str]:
		return [cmd[0] for cmd in self.commands]

	@property
	def chroot_commands(self) -> list[str]:
		return [cmd[-1] for cmd in self.commands if cmd[0] == 'artix-chroot']

	def input_for(self, program: str) -> bytes | None:
		for cmd, input_data in zip(self.commands, self.inputs):
			if cmd[0] == program:
				return input_data
		return None


@pytest.fixture(autouse=True)
def _log_to_tmp(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
	log_dir = tmp_path / 'log'
	monkeypatch.setattr(output.logger, '_path', log_dir)
	monkeypatch.setitem(storage, 'LOG_PATH', str(log_dir))


@pytest.fixture
def runner() -> RecordingRunner:
	return RecordingRunner()


@pytest.fixture
def runner_factory() -> type[RecordingRunner]:
	return RecordingRunner


@pytest.fixture(scope='session')
def config_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_config.json'


@pytest.fixture(scope='session')
def lvm_thin_config_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_config_lvm_thin.json'


@pytest.fixture(scope='session')
def custom_config_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_config_custom.json'


@pytest.fixture(scope='session')
def lsblk_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_lsblk.json'


@pytest.fixture(scope='session')
def mounts_fixture() -> Path:
	return Path(__file__).parent / 'data' / 'test_mounts'


@pytest.fixture
def deployment_config(config_fixture: Path) -> DeploymentConfig:
	return DeploymentConfig.from_config(json.loads(config_fixture.read_text()))


@pytest.fixture
def lvm_thin_config(lvm_thin_config_fixture: Path) -> DeploymentConfig:
	return DeploymentConfig.from_config(json.loads(lvm_thin_config_fixture.read_text()))


@pytest.fixture
def custom_config(custom_config_fixture: Path) -> DeploymentConfig:
	return DeploymentConfig.from_config(json.loads(custom_config_fixture.read_text()))
