from deploytix.lib.args import ConfigHandler
from deploytix.lib.exceptions import ConfigError
from deploytix.lib.output import info, log


def main(handler: ConfigHandler) -> int:
	if handler.args.config is None:
		raise ConfigError('validate needs a configuration file, use --config')

	handler.config.validate()

	log(f'Configuration {handler.args.config} is valid', fg='green')
	info(f'Target device: {handler.config.disk.device}, layout: {handler.config.disk.layout.display_msg()}')
	return 0
