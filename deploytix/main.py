"""Artix Linux deployment - loads and runs one of the deploytix scripts"""

import importlib
import sys
import textwrap
import traceback

from .lib.args import ConfigHandler
from .lib.exceptions import DeploytixError
from .lib.output import debug, error, logger, warn


def run(argv: list[str] | None = None) -> int:
	handler = ConfigHandler(argv)
	script = handler.get_script()

	debug(f'Running script: {script}')

	mod_name = f'deploytix.scripts.{script}'
	module = importlib.import_module(mod_name)

	return module.main(handler)


def _error_message(exc: Exception) -> None:
	err = ''.join(traceback.format_exception(exc))
	error(err)

	text = textwrap.dedent(
		f"""\
		Deploytix experienced the above error. If you think this is a bug, please report it
		and include the log file "{logger.path}".

		Resources left behind by an interrupted installation can be released with:
		deploytix --script cleanup
		"""
	)
	warn(text)


def main(argv: list[str] | None = None) -> int:
	rc = 0

	try:
		rc = run(argv)
	except DeploytixError as err:
		# expected failures carry a message meant for the user
		error(str(err))
		debug(''.join(traceback.format_exception(err)))
		rc = 1
	except Exception as exc:
		_error_message(exc)
		rc = 1

	return rc


if __name__ == '__main__':
	sys.exit(main())
