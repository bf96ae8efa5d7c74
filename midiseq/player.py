import asyncio
import logging
import time
import typing

import midiseq.mido_output
import midiseq.sequencer


logger = logging.getLogger(__name__)


Listener = typing.Callable[..., typing.Any]

PLAYER_EVENTS = ("start", "loop", "end", "stop")


class Player:

	"""
	Drives a loaded ``MidiSequencer`` in real time from an asyncio task.

	Events (subscribe with ``player.on(name, callback)``):
		``start``: playback began.
		``loop(position)``: playback jumped back to ``position`` seconds.
		``end``: the song finished (post-song wait included).
		``stop``: playback stopped, at the end or by ``stop()``.

	Listeners may be plain functions or coroutines.
	"""

	def __init__ (
		self,
		sequencer: midiseq.sequencer.MidiSequencer,
		output: typing.Optional[midiseq.mido_output.MidoOutput] = None,
		granularity: float = 0.001,
		spin_wait: bool = True,
		render_mode: bool = False,
		render_max_seconds: typing.Optional[float] = None
	) -> None:

		"""
		Parameters:
			sequencer: The sequencer to play; its song must already be loaded.
			output: When given, silenced with ``panic()`` on stop.
			granularity: Timing resolution in seconds passed to ``tick()``.
			spin_wait: When True (default), sleep to within a millisecond of each
				event and busy-wait the rest, for tighter timing at some CPU cost.
				Set to False to use pure ``asyncio.sleep()``.
			render_mode: Run as fast as possible on simulated time instead of
				the wall clock.
			render_max_seconds: In render mode, stop after this much song time.
		"""

		if granularity <= 0:
			raise ValueError("Granularity must be positive")

		self.sequencer = sequencer
		self.output = output
		self.granularity = granularity
		self.render_mode = render_mode
		self.render_max_seconds = render_max_seconds

		self.running = False
		self.task: typing.Optional[asyncio.Task] = None

		# Song time covered so far, loops included
		self.elapsed_seconds = 0.0

		self._listeners: typing.Dict[str, typing.List[Listener]] = {name: [] for name in PLAYER_EVENTS}

		self._spin_wait = spin_wait
		# Sleep to this many seconds before the target, then busy-wait
		self._spin_threshold = 0.001

	def on (self, event_name: str, listener: Listener) -> None:

		"""Call ``listener`` every time the player emits ``event_name``."""

		if event_name not in self._listeners:
			raise ValueError(f"Unknown player event {event_name!r}, expected one of {', '.join(PLAYER_EVENTS)}")

		self._listeners[event_name].append(listener)

	def off (self, event_name: str, listener: Listener) -> None:

		"""
		Stop calling ``listener`` for ``event_name``.

		Raises ``ValueError`` when the listener was never registered.
		"""

		listeners = self._listeners.get(event_name, [])

		if listener not in listeners:
			raise ValueError(f"Listener not registered for event {event_name!r}")

		listeners.remove(listener)

	async def _emit (self, event_name: str, *args: typing.Any) -> None:

		"""Call plain listeners in order, then await all coroutine listeners together."""

		pending: typing.List[typing.Awaitable[typing.Any]] = []

		for listener in list(self._listeners[event_name]):

			if asyncio.iscoroutinefunction(listener):
				pending.append(listener(*args))
			else:
				listener(*args)

		if pending:
			await asyncio.gather(*pending)

	async def play (self) -> None:

		"""
		Start playback and wait until the song ends or ``stop()`` is called.
		"""

		await self.start()

		try:
			if self.task:
				await self.task
		except asyncio.CancelledError:
			pass
		finally:
			await self.stop()

	async def start (self) -> None:

		"""Start playback in a separate asyncio task."""

		if self.running:
			return

		self.running = True
		self.elapsed_seconds = 0.0
		self.task = asyncio.create_task(self._run_loop())

		logger.info("Player started")

		await self._emit("start")

	async def stop (self) -> None:

		"""
		Stop playback and silence the output.
		"""

		if self.task is None:
			return

		logger.info("Stopping player...")

		self.running = False

		if self.task is not asyncio.current_task():
			await self.task

		self.task = None

		if self.output is not None:
			self.output.panic()

		logger.info("Player stopped")

		await self._emit("stop")

	async def _run_loop (self) -> None:

		"""Tick the sequencer at each due event until the song ends."""

		sequencer = self.sequencer
		last_time = time.perf_counter()
		delay = 0.0

		while self.running:

			# Render mode simulates the wall clock reaching the next event exactly
			current_time = last_time + delay if self.render_mode else time.perf_counter()
			elapsed = current_time - last_time
			last_time = current_time
			self.elapsed_seconds += elapsed

			# A loop jump can land back exactly where the previous tick left off
			expected_position = sequencer.tell() + elapsed * sequencer.get_tempo_multiplier()

			delay = sequencer.tick(elapsed, self.granularity)

			position = sequencer.tell()

			if position < expected_position - 1e-9:
				logger.debug(f"Looped back to {position:.3f}s")
				await self._emit("loop", position)

			if sequencer.position_at_end() and delay <= 0.0:
				logger.info("Song complete.")
				self.running = False
				await self._emit("end")
				break

			if self.render_mode:

				if self.render_max_seconds is not None and self.elapsed_seconds >= self.render_max_seconds:
					logger.info(f"Render limit of {self.render_max_seconds}s reached.")
					self.running = False
					break

				if delay <= 0.0:
					delay = self.granularity

				# Let other tasks run between simulated steps
				await asyncio.sleep(0)
				continue

			target_time = last_time + max(delay, self.granularity)
			sleep_time = target_time - time.perf_counter()

			if sleep_time > 0:
				if self._spin_wait and sleep_time > self._spin_threshold:
					await asyncio.sleep(sleep_time - self._spin_threshold)
					while time.perf_counter() < target_time:
						pass
				else:
					await asyncio.sleep(sleep_time)
			else:
				await asyncio.sleep(0)
