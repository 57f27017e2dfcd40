from __future__ import annotations

import os
import signal
from types import FrameType
from typing import Any

_INTERRUPT_MESSAGE = b'\nInterrupt received, cleaning up...\n'
_FORCED_EXIT_MESSAGE = b'\nForced exit - cleanup may be incomplete. Run: deploytix cleanup\n'


class InterruptToken:
	"""
	Cancellation token shared between the signal listener and the
	command runner. The runner polls it before every side-effecting
	command; cleanup paths ignore it.
	"""

	def __init__(self) -> None:
		self._interrupted = False
		self._signum: int | None = None

	@property
	def interrupted(self) -> bool:
		return self._interrupted

	@property
	def signum(self) -> int | None:
		return self._signum

	def set(self, signum: int | None = None) -> None:
		self._interrupted = True
		if self._signum is None:
			self._signum = signum

	def clear(self) -> None:
		self._interrupted = False
		self._signum = None


class SignalListener:
	def __init__(self, token: InterruptToken, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)) -> None:
		self.token = token
		self.signals = signals
		self.count = 0
		self._previous: dict[int, Any] = {}

	def install(self) -> None:
		for signum in self.signals:
			self._previous[signum] = signal.getsignal(signum)
			signal.signal(signum, self._handle)

	def restore(self) -> None:
		for signum, handler in self._previous.items():
			signal.signal(signum, handler)

		self._previous.clear()

	def _handle(self, signum: int, frame: FrameType | None) -> None:
		# only async-signal-safe primitives below, os.write instead of print()
		self.count += 1

		if self.count == 1:
			self.token.set(signum)
			os.write(2, _INTERRUPT_MESSAGE)
			return

		os.write(2, _FORCED_EXIT_MESSAGE)
		signal.signal(signum, signal.SIG_DFL)
		os.kill(os.getpid(), signum)


def install_signal_handlers(token: InterruptToken) -> SignalListener:
	listener = SignalListener(token)
	listener.install()
	return listener


def reraise(token: InterruptToken) -> None:
	"""
	Re-delivers the signal that interrupted the installation with its
	default disposition, so the parent observes a death-by-signal exit.
	"""
	if (signum := token.signum) is None:
		return

	signal.signal(signum, signal.SIG_DFL)
	os.kill(os.getpid(), signum)
