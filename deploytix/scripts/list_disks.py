from deploytix.lib.args import ConfigHandler
from deploytix.lib.disk.utils import list_block_devices
from deploytix.lib.output import FormattedOutput


def main(handler: ConfigHandler) -> int:
	devices = list_block_devices(include_all=handler.args.all)

	if not devices:
		print('No suitable disks found.')
		return 0

	print(FormattedOutput.as_table(devices))
	return 0
