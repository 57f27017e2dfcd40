from deploytix.lib.args import ConfigHandler
from deploytix.lib.cleanup import Cleaner
from deploytix.lib.general import CommandRunner, require_root


def main(handler: ConfigHandler) -> int:
	args = handler.args

	require_root()

	runner = CommandRunner(dry_run=args.dry_run)
	device = args.device or handler.config.disk.device or None

	Cleaner(runner, args.mountpoint).cleanup(device, wipe=args.wipe)
	return 0
