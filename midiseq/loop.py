"""Loop bookkeeping: the song-wide loop and the stack of nested loops.

A song can carry one global loop (``LoopStart``/``LoopEnd`` markers) and any
number of nested loops (``LoopStackBegin(n)``/``LoopStackEnd``/``LoopStackBreak``).
``n`` is the number of passes, with 0 meaning forever.  The playback engine sets
the ``caught_*`` flags while dispatching a row and consumes them once the row has
been handled.
"""

import dataclasses
import logging
import typing

import midiseq.events


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class LoopStackEntry:

	"""One frame of the nested loop stack."""

	infinity: bool = False
	loops: int = 0
	start_position: typing.Optional[midiseq.events.Position] = None
	start: int = 0
	end: int = 0


class LoopState:

	"""Loop flags, repeat counters and the nested loop stack of one song."""

	def __init__ (self) -> None:

		self.caught_start = False
		self.caught_end = False
		self.caught_stack_start = False
		self.caught_stack_end = False
		self.caught_stack_break = False
		self.skip_stack_start = False

		# Loop points are unusable (duplicated, misordered or unbalanced)
		self.invalid_loop = False

		# Set when a seek lands past the loop end; the next song end rewinds to the very beginning
		self.temporary_broken = False

		# Extra passes of the global loop, -1 for infinite
		self.loops_count = -1
		self.loops_left = -1

		self.stack: typing.List[LoopStackEntry] = []
		self.stack_level = -1

	def reset (self) -> None:

		"""Clear the edge flags and refill the global loop counter."""

		self.caught_start = False
		self.caught_end = False
		self.caught_stack_start = False
		self.caught_stack_end = False
		self.caught_stack_break = False
		self.skip_stack_start = False
		self.loops_left = self.loops_count

	def full_reset (self) -> None:

		"""Return to the state of a freshly created song."""

		self.loops_count = -1
		self.reset()
		self.invalid_loop = False
		self.temporary_broken = False
		self.stack = []
		self.stack_level = -1

	def is_stack_end (self) -> bool:

		"""True when a stack end was caught and the current frame still has passes left."""

		if self.caught_stack_end and 0 <= self.stack_level < len(self.stack):
			entry = self.stack[self.stack_level]
			if entry.infinity or entry.loops > 0:
				return True

		return False

	def stack_up (self, count: int = 1) -> None:
		self.stack_level += count

	def stack_down (self, count: int = 1) -> None:
		self.stack_level -= count

	def get_current_stack (self) -> LoopStackEntry:

		"""Return the frame at the current level.

		Out of range levels fall back to the bottom frame, creating an empty one
		when the stack has none, so unbalanced markers in broken files never index
		past the stack.
		"""

		if 0 <= self.stack_level < len(self.stack):
			return self.stack[self.stack_level]

		if not self.stack:
			logger.debug(f"Loop stack accessed at level {self.stack_level} with no frames")
			self.stack.append(LoopStackEntry())

		return self.stack[0]
