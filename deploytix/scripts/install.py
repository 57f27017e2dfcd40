from deploytix.lib.args import ConfigHandler
from deploytix.lib.exceptions import UserCancelled
from deploytix.lib.general import CommandRunner, require_root
from deploytix.lib.installer import Installer
from deploytix.lib.interrupt import InterruptToken, install_signal_handlers
from deploytix.lib.output import debug, info, log, logger, warn


def confirm_erase(device: str) -> None:
	warn(f'All data on {device} will be erased!')

	answer = input("Type 'yes' to continue: ")

	if answer.strip() != 'yes':
		raise UserCancelled()


def main(handler: ConfigHandler) -> int:
	args = handler.args
	config = handler.config

	require_root()

	debug(f'Installation configuration: {config.safe_json()}')
	config.validate()

	if not (args.silent or args.dry_run):
		confirm_erase(config.disk.device)

	token = InterruptToken()
	runner = CommandRunner(dry_run=args.dry_run, token=token)
	listener = install_signal_handlers(token)

	try:
		Installer(config, runner, args.mountpoint).run()
	finally:
		listener.restore()

	if args.dry_run:
		info('Dry run complete, no changes were made')
	else:
		log(f'Installation completed without any errors.\nLog files are available at {logger.directory}.\nYou may reboot when ready.', fg='green')

	return 0
