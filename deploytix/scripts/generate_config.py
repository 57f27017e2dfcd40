import json

from deploytix.lib.args import ConfigHandler, DeploymentConfig
from deploytix.lib.general import jsonify
from deploytix.lib.output import info, log


def main(handler: ConfigHandler) -> int:
	sample = DeploymentConfig.sample()
	content = json.dumps(jsonify(sample.unsafe_json(), safe=False), indent=4)

	if (output := handler.args.output) is None:
		print(content)
		return 0

	output.write_text(content + '\n')
	output.chmod(0o600)

	log(f'Sample configuration written to {output}', fg='green')
	info('Change the passwords and the target device before using it')
	return 0
