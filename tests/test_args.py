import json
from pathlib import Path

import pytest
from pytest import MonkeyPatch

from deploytix.lib import output
from deploytix.lib.args import Arguments, ConfigHandler, DeploymentConfig
from deploytix.lib.exceptions import ConfigError, ValidationError
from deploytix.lib.models.desktop import DesktopConfiguration, DesktopEnvironment
from deploytix.lib.models.device import CustomPartitionEntry, DiskConfiguration, FilesystemType, PartitionLayout, SwapType
from deploytix.lib.models.network import NetworkBackend, NetworkConfiguration
from deploytix.lib.models.system import Bootloader, InitSystem, SystemConfiguration
from deploytix.lib.models.users import User


def test_default_args(monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr('sys.argv', ['deploytix'])
	handler = ConfigHandler()
	args = handler.args
	assert args == Arguments(
		config=None,
		device=None,
		dry_run=False,
		debug=False,
		silent=False,
		script=None,
		wipe=False,
		all=False,
		output=None,
		mountpoint=Path('/install'),
	)
	assert handler.get_script() == 'install'
	assert handler.config.disk == DiskConfiguration()


def test_correct_parsing_args(monkeypatch: MonkeyPatch, config_fixture: Path) -> None:
	monkeypatch.setattr(output.logger, 'verbose', False)
	monkeypatch.setattr(
		'sys.argv',
		[
			'deploytix',
			'--config',
			str(config_fixture),
			'--device',
			'/dev/vdb',
			'--script',
			'list-disks',
			'--mountpoint',
			'/tmp/target',
			'--dry-run',
			'--debug',
			'--silent',
			'--wipe',
			'--all',
			'--output',
			'/tmp/sample.json',
		],
	)

	handler = ConfigHandler()

	assert handler.args == Arguments(
		config=config_fixture,
		device='/dev/vdb',
		dry_run=True,
		debug=True,
		silent=True,
		script='list-disks',
		wipe=True,
		all=True,
		output=Path('/tmp/sample.json'),
		mountpoint=Path('/tmp/target'),
	)
	assert handler.get_script() == 'list_disks'
	assert output.logger.verbose

	# the command line wins over the configuration file
	assert handler.config.disk.device == '/dev/vdb'


def test_silent_requires_config(monkeypatch: MonkeyPatch) -> None:
	monkeypatch.setattr('sys.argv', ['deploytix', '--silent'])

	assert not ConfigHandler().args.silent


def test_unknown_script_is_rejected() -> None:
	with pytest.raises(SystemExit):
		ConfigHandler(['--script', 'format-everything'])


def test_missing_config_file(tmp_path: Path) -> None:
	with pytest.raises(SystemExit):
		ConfigHandler(['--config', str(tmp_path / 'missing.json')])


def test_invalid_config_value(tmp_path: Path) -> None:
	config = tmp_path / 'config.json'
	config.write_text(json.dumps({'disk': {'device': '/dev/sda', 'filesystem': 'ntfs'}}))

	with pytest.raises(SystemExit):
		ConfigHandler(['--config', str(config)])


def test_config_file_parsing(config_fixture: Path) -> None:
	handler = ConfigHandler(['--config', str(config_fixture)])
	config = handler.config

	assert config.disk == DiskConfiguration(
		device='/dev/sda',
		layout=PartitionLayout.Standard,
		filesystem=FilesystemType.Btrfs,
		encryption=True,
		encryption_password='cryptpass',
		swap_type=SwapType.Partition,
		use_subvolumes=True,
	)
	assert config.system == SystemConfiguration(
		init=InitSystem.Runit,
		bootloader=Bootloader.Grub,
		timezone='Europe/Berlin',
		locale='de_DE.UTF-8',
		keymap='de-latin1',
		hostname='artix-test',
	)
	assert config.user == User(name='tester', password='userpass', groups=['wheel', 'video'], sudoer=True)
	assert config.network == NetworkConfiguration(NetworkBackend.Iwd)
	assert config.desktop == DesktopConfiguration(DesktopEnvironment.NoDesktop)
	assert config.version is not None


def test_plain_password_keys(lvm_thin_config: DeploymentConfig) -> None:
	disk = lvm_thin_config.disk

	assert disk.encryption_password == 'cryptpass'
	assert lvm_thin_config.user.password == 'userpass'
	assert disk.uses_lvm_thin
	assert disk.swap_type == SwapType.FileZram
	assert disk.zram_percent == 25
	assert disk.lvm_vg_name == 'vgartix'
	assert disk.lvm_thin_pool_name == 'thinpool'
	assert disk.lvm_thin_pool_percent == 90
	assert lvm_thin_config.desktop.resolved_display_manager == 'sddm'
	assert lvm_thin_config.network.backend == NetworkBackend.NetworkManager


def test_custom_partitions(custom_config: DeploymentConfig) -> None:
	assert custom_config.disk.custom_partitions == [
		CustomPartitionEntry('/', 30720),
		CustomPartitionEntry('/srv/data', 10240, encryption=False),
		CustomPartitionEntry('/home', 0, label='users'),
	]
	assert [entry.partition_name() for entry in custom_config.disk.custom_partitions] == ['ROOT', 'SRV_DATA', 'USERS']

	custom_config.validate()


def test_safe_json_hides_secrets(deployment_config: DeploymentConfig) -> None:
	safe = deployment_config.safe_json()
	unsafe = deployment_config.unsafe_json()

	assert '!encryption_password' not in safe['disk']
	assert '!password' not in safe['user']
	assert 'cryptpass' not in json.dumps(safe)
	assert 'userpass' not in json.dumps(safe)

	assert unsafe['disk']['!encryption_password'] == 'cryptpass'
	assert unsafe['user']['!password'] == 'userpass'


def test_unsafe_json_loads_back(lvm_thin_config: DeploymentConfig) -> None:
	reloaded = DeploymentConfig.from_config(json.loads(json.dumps(lvm_thin_config.unsafe_json())))

	assert reloaded.disk == lvm_thin_config.disk
	assert reloaded.system == lvm_thin_config.system
	assert reloaded.user == lvm_thin_config.user
	assert reloaded.desktop == lvm_thin_config.desktop


def test_sample_is_valid() -> None:
	DeploymentConfig.sample().validate()


@pytest.mark.parametrize(
	'changes, message',
	[
		({'device': ''}, 'No target device configured'),
		({'encryption_password': None}, 'Encryption password required'),
		({'lvm_thin_pool_percent': 0}, 'Thin pool size'),
		({'lvm_thin_pool_percent': 101}, 'Thin pool size'),
	],
)
def test_validate_disk_errors(deployment_config: DeploymentConfig, changes: dict, message: str) -> None:  # type: ignore[type-arg]
	for key, value in changes.items():
		setattr(deployment_config.disk, key, value)

	with pytest.raises(ValidationError, match=message):
		deployment_config.validate()


def test_validate_boot_encryption_needs_encryption(deployment_config: DeploymentConfig) -> None:
	deployment_config.disk.encryption = False
	deployment_config.disk.boot_encryption = True

	with pytest.raises(ValidationError, match='Boot encryption requires encryption'):
		deployment_config.validate()


@pytest.mark.parametrize(
	'user, message',
	[
		(User(name='', password='x'), 'User name cannot be empty'),
		(User(name='two words', password='x'), 'cannot contain spaces'),
		(User(name='tester', password=''), 'No password set'),
	],
)
def test_validate_user_errors(deployment_config: DeploymentConfig, user: User, message: str) -> None:
	deployment_config.user = user

	with pytest.raises(ValidationError, match=message):
		deployment_config.validate()


def test_validate_custom_layout(custom_config: DeploymentConfig) -> None:
	custom_config.disk.custom_partitions = None

	with pytest.raises(ConfigError):
		custom_config.validate()

	custom_config.disk.custom_partitions = [CustomPartitionEntry('/boot', 1024), CustomPartitionEntry('/', 0)]

	with pytest.raises(ValidationError, match='reserved'):
		custom_config.validate()


def test_invalid_enum_values() -> None:
	with pytest.raises(ConfigError):
		DeploymentConfig.from_config({'system': {'init': 'systemd'}})

	with pytest.raises(ConfigError):
		DeploymentConfig.from_config({'desktop': {'environment': 'cinnamon'}})

	with pytest.raises(ConfigError):
		DeploymentConfig.from_config({'disk': {'custom_partitions': [{'size_mib': 10}]}})
