import dataclasses
import fractions
import logging
import typing

import midiseq.constants
import midiseq.events
import midiseq.interface
import midiseq.loop
import midiseq.mus
import midiseq.smf
import midiseq.timeline

from midiseq.constants import EventType, MetaType


logger = logging.getLogger(__name__)


TriggerHandler = typing.Callable[[int, int], None]


@dataclasses.dataclass
class SequencerTime:

	"""Bookkeeping that keeps ``play_stream`` ticks aligned with the PCM sample clock."""

	sample_rate: int = midiseq.constants.DEFAULT_SAMPLE_RATE
	frame_size: int = midiseq.constants.DEFAULT_FRAME_SIZE
	time_rest: float = 0.0
	minimum_delay: float = 1.0 / midiseq.constants.DEFAULT_SAMPLE_RATE
	delay: float = 0.0

	def reset (self) -> None:

		self.time_rest = 0.0
		self.minimum_delay = 1.0 / self.sample_rate
		self.delay = 0.0


class MidiSequencer:

	"""
	Plays Standard MIDI Files and DMX MUS scores through a ``MidiOutputInterface``.

	The sequencer is a plain state machine: nothing happens unless the owner calls
	``tick()`` (wall-clock driven), ``play_stream()`` (driven by an audio buffer)
	or ``seek()``.  It does no I/O of its own and is not thread-safe; one caller
	at a time.

	Example:
		```python
		sequencer = midiseq.MidiSequencer(interface)

		if not sequencer.load_midi(data):
			print(sequencer.get_error_string())

		while not sequencer.position_at_end():
			time.sleep(sequencer.tick(0.001, 0.001))
		```
	"""

	def __init__ (
		self,
		interface: typing.Optional[midiseq.interface.MidiOutputInterface] = None,
		post_song_wait_delay: float = midiseq.constants.DEFAULT_POST_SONG_WAIT_DELAY,
		mus_frequency: int = 0
	) -> None:

		"""
		Parameters:
			interface: Where resolved events are sent.  Can be set later with
				``set_interface()``, but must be set before loading.
			post_song_wait_delay: Seconds of silence after the last event before
				the song counts as finished.
			mus_frequency: Tick rate MUS scores are authored for (0 = the native
				140 Hz).
		"""

		self._interface: typing.Optional[midiseq.interface.MidiOutputInterface] = None
		self._post_song_wait_delay = post_song_wait_delay
		self._mus_frequency = mus_frequency

		self.loop = midiseq.loop.LoopState()
		self._time = SequencerTime()

		self._smf_format = 0
		self._loop_enabled = False
		self._loop_hooks_only = False
		self._tempo_multiplier = 1.0
		self._at_end = False

		# 0-based count of extra passes, -1 for infinite
		self._loop_count = -1

		self._track_solo: typing.Optional[int] = None
		self._track_disabled: typing.List[bool] = []
		self._channel_disabled = [False] * midiseq.constants.MIDI_CHANNELS

		self._trigger_handler: typing.Optional[TriggerHandler] = None
		self._error_string = ""

		self._install(self._empty_timeline())

		if interface is not None:
			self.set_interface(interface)

	# --- Configuration ---

	def set_interface (self, interface: midiseq.interface.MidiOutputInterface) -> None:

		"""Set the output interface.

		Raises:
			ValueError: When a required hook is missing.
		"""

		interface.validate()

		if interface.pcm_sample_rate and interface.pcm_frame_size:
			self._time.sample_rate = interface.pcm_sample_rate
			self._time.frame_size = interface.pcm_frame_size
			self._time.reset()

		self._interface = interface

	def set_trigger_handler (self, handler: typing.Optional[TriggerHandler]) -> None:

		"""Set the receiver of callback trigger events, called as ``handler(trigger, track)``."""

		self._trigger_handler = handler

	def set_loop_enabled (self, enabled: bool) -> None:
		self._loop_enabled = enabled

	def get_loop_enabled (self) -> bool:
		return self._loop_enabled

	def set_loops_count (self, loops: int) -> None:

		"""Set how many times the song plays when looping (-1 or 0 for forever)."""

		if loops >= 1:
			loops -= 1

		self._loop_count = loops

	def get_loops_count (self) -> int:
		return self._loop_count + 1 if self._loop_count >= 0 else self._loop_count

	def set_loop_hooks_only (self, enabled: bool) -> None:

		"""When enabled, reaching the loop end calls ``on_loop_end`` and stops the song instead of looping."""

		self._loop_hooks_only = enabled

	def set_tempo (self, tempo: float) -> None:

		"""Set the playback speed multiplier (1.0 = as written)."""

		self._tempo_multiplier = tempo

	def get_tempo_multiplier (self) -> float:
		return self._tempo_multiplier

	def set_track_enabled (self, track: int, enable: bool) -> bool:

		"""Mute or unmute a track.  Returns False when there is no such track."""

		if track < 0 or track >= len(self._track_disabled):
			return False

		self._track_disabled[track] = not enable
		return True

	def set_channel_enabled (self, channel: int, enable: bool) -> bool:

		"""Mute or unmute a MIDI channel.

		Muting a channel releases its pedals and every note on it, so nothing is
		left hanging.  Returns False for channels outside 0-15.
		"""

		if channel < 0 or channel >= midiseq.constants.MIDI_CHANNELS:
			return False

		if not enable and not self._channel_disabled[channel]:

			interface = self._require_interface()

			interface.controller_change(channel, midiseq.constants.CC_SUSTAIN, 0)
			interface.controller_change(channel, midiseq.constants.CC_SOSTENUTO, 0)

			for note in range(127):
				if interface.note_off is not None:
					interface.note_off(channel, note)
				if interface.note_off_vel is not None:
					interface.note_off_vel(channel, note, 0)

		self._channel_disabled[channel] = not enable
		return True

	def set_solo_track (self, track: typing.Optional[int]) -> None:

		"""Play only ``track``; ``None`` plays every track again."""

		self._track_solo = track

	# --- Song information ---

	def get_error_string (self) -> str:
		return self._error_string

	def get_music_title (self) -> str:
		return self._timeline.music_title

	def get_music_copyright (self) -> str:
		return self._timeline.music_copyright

	def get_track_titles (self) -> typing.List[str]:
		return list(self._timeline.track_titles)

	def get_markers (self) -> typing.List[midiseq.events.MidiMarkerEntry]:
		return list(self._timeline.markers)

	def get_track_count (self) -> int:
		return len(self._timeline.tracks)

	def time_length (self) -> float:

		"""Song length in seconds, post-song wait included."""

		return self._timeline.full_song_time_length

	def get_loop_start (self) -> float:

		"""Loop start in seconds, or -1.0 without a valid loop."""

		return self._timeline.loop_start_time

	def get_loop_end (self) -> float:

		"""Loop end in seconds, or -1.0 without a valid loop."""

		return self._timeline.loop_end_time

	def tell (self) -> float:

		"""Current position in seconds."""

		return self._current_position.absolute_time_position

	def position_at_end (self) -> bool:
		return self._at_end

	# --- Loading ---

	def load_midi (self, data: bytes) -> bool:

		"""Load a Standard MIDI File or a MUS score.

		Returns False on failure, with the reason available from
		``get_error_string()``.  A failed load leaves an empty song that never
		plays.

		Raises:
			ValueError: When no output interface has been set.
		"""

		self._require_interface()

		self._error_string = ""
		self._at_end = False
		self.loop.full_reset()
		self.loop.caught_start = True
		self._smf_format = 0

		try:
			smf = midiseq.smf.parse_smf(self._to_smf(bytes(data)))
			timeline = midiseq.timeline.Timeline(
				smf.division,
				self.loop,
				debug = self._debug,
				post_song_wait_delay = self._post_song_wait_delay
			)
			timeline.build(smf.tracks)

		except midiseq.smf.MidiLoadError as error:
			self._error_string = str(error)
			self.loop.full_reset()
			self._install(self._empty_timeline())
			logger.warning(f"Failed to load music: {self._error_string.strip()}")
			return False

		self._install(timeline)
		self._smf_format = smf.format

		logger.info(f"Loaded {len(smf.tracks)} tracks, {timeline.full_song_time_length:.2f} seconds")

		return True

	def _to_smf (self, data: bytes) -> bytes:

		"""Return ``data`` as SMF bytes, converting MUS scores."""

		if len(data) < midiseq.constants.SMF_HEADER_SIZE:
			raise midiseq.smf.MidiLoadError("Unexpected end of file at header!\n")

		if data[:8] == midiseq.constants.SMF_HEADER_MAGIC:
			return data

		if data[:4] == midiseq.constants.MUS_HEADER_MAGIC:

			try:
				return midiseq.mus.convert_mus_to_midi(data, self._mus_frequency)
			except midiseq.mus.MusConversionError as error:
				logger.debug(f"MUS conversion failed: {error}")
				raise midiseq.smf.MidiLoadError("Invalid MUS/DMX data format!") from error

		raise midiseq.smf.MidiLoadError("Unknown or unsupported file format")

	def _empty_timeline (self) -> midiseq.timeline.Timeline:
		return midiseq.timeline.Timeline(midiseq.constants.DEFAULT_DIVISION, self.loop, post_song_wait_delay=0.0)

	def _install (self, timeline: midiseq.timeline.Timeline) -> None:

		"""Make ``timeline`` the current song and move to its beginning."""

		self._timeline = timeline
		self._tempo = timeline.initial_tempo

		self._track_begin_position = timeline.track_begin_position
		self._loop_begin_position = timeline.loop_begin_position
		self._current_position = self._track_begin_position.copy()

		self._track_disabled = [False] * len(timeline.tracks)
		self._channel_disabled = [False] * midiseq.constants.MIDI_CHANNELS
		self._track_solo = None

		self.loop.loops_count = self._loop_count
		self.loop.loops_left = self._loop_count
		self.loop.stack_level = -1

		self._time.reset()

	# --- Playback ---

	def rewind (self) -> None:

		"""Return to the beginning of the song."""

		self._current_position = self._track_begin_position.copy()
		self._at_end = False
		self._tempo = self._timeline.initial_tempo

		self.loop.loops_count = self._loop_count
		self.loop.reset()
		self.loop.caught_start = True
		self.loop.temporary_broken = False
		self.loop.stack_level = -1

		self._time.reset()

	def tick (self, seconds: float, granularity: float) -> float:

		"""Advance playback by ``seconds`` and dispatch every event that became due.

		Parameters:
			seconds: Time elapsed since the previous call.
			granularity: Timing resolution of the caller; events due within half
				of it are dispatched now.

		Returns:
			Seconds until the next event is due (never negative).
		"""

		self._require_interface()

		seconds *= self._tempo_multiplier
		self._current_position.wait -= seconds
		self._current_position.absolute_time_position += seconds

		anti_freeze = midiseq.constants.ANTI_FREEZE_LIMIT

		while self._current_position.wait <= granularity * 0.5 and anti_freeze > 0:

			if not self.process_events():
				break

			if self._current_position.wait <= 0.0:
				anti_freeze -= 1

		# Too many zero-delay rows in a row: back off for a second
		if anti_freeze <= 0:
			self._current_position.wait += 1.0

		if self._current_position.wait < 0.0:
			return 0.0

		return self._current_position.wait

	def seek (self, seconds: float, granularity: float) -> float:

		"""Jump to ``seconds`` from the start of the song.

		The song is replayed from the beginning without sounding notes, so
		controllers, patches and tempo are correct at the destination.  Looping is
		suspended during the replay.  Seeking past the end rewinds.  Seeking into
		the silence after the last event leaves the song at its end.

		Returns:
			Seconds until the next event is due.
		"""

		if seconds < 0.0:
			return 0.0

		if seconds > self.time_length():
			self.rewind()
			return 0.0

		half_granularity = granularity * 0.5
		loop_enabled = self._loop_enabled
		self._loop_enabled = False

		try:
			self.rewind()

			# Keep the loop begin snapshot where the load-time scan put it
			self.loop.caught_start = False
			self.loop.temporary_broken = seconds >= self._timeline.loop_end_time

			while self._current_position.absolute_time_position < seconds and self._current_position.absolute_time_position < self.time_length():

				self._current_position.wait -= seconds
				self._current_position.absolute_time_position += seconds

				anti_freeze = midiseq.constants.ANTI_FREEZE_LIMIT
				destination_wait = self._current_position.wait + half_granularity

				while self._current_position.wait <= half_granularity and anti_freeze > 0:

					if not self.process_events(is_seek=True):
						break

					if self._current_position.wait <= destination_wait:
						anti_freeze -= 1
					else:
						destination_wait = self._current_position.wait + half_granularity
						anti_freeze = midiseq.constants.ANTI_FREEZE_LIMIT

				if anti_freeze <= 0:
					self._current_position.wait += 1.0

			if self._current_position.wait < 0.0:
				self._current_position.wait = 0.0

			self._time.reset()
			self._time.delay = self._current_position.wait

			return self._current_position.wait

		finally:
			self._loop_enabled = loop_enabled

	def play_stream (self, buffer: typing.Optional[typing.Union[bytearray, memoryview]], length: typing.Optional[int] = None) -> int:

		"""Fill a PCM buffer, ticking the song in step with the samples.

		The buffer is handed to ``on_pcm_render`` in slices whose boundaries fall
		on event times, so events reach the synth on the right sample.

		Parameters:
			buffer: Writable buffer for the rendered audio, or None to advance
				the song without rendering.
			length: Bytes to produce; defaults to the whole buffer.

		Returns:
			Number of bytes written.  Less than ``length`` once the song has ended.

		Raises:
			ValueError: When the interface has no ``on_pcm_render`` hook.
		"""

		interface = self._require_interface()

		if interface.on_pcm_render is None:
			raise ValueError("play_stream() needs an on_pcm_render hook on the output interface")

		timing = self._time

		if length is None:
			length = len(buffer) if buffer is not None else 0

		view = memoryview(buffer).cast("B") if buffer is not None else None

		samples = length // timing.frame_size
		left = samples
		offset = 0
		count = 0

		while left > 0:

			left_delay = left / timing.sample_rate
			max_delay = min(timing.time_rest, left_delay)

			if self.position_at_end() and timing.delay <= 0.0:
				break

			timing.time_rest -= max_delay
			period_size = int(timing.sample_rate * max_delay)
			generate_size = min(period_size, left)

			if view is not None:
				size = generate_size * timing.frame_size
				interface.on_pcm_render(view[offset:offset + size])
				offset += size
				count += generate_size

			left -= generate_size

			if timing.time_rest <= 0.0:
				timing.delay = self.tick(timing.delay, timing.minimum_delay)
				timing.time_rest += timing.delay

		return count * timing.frame_size

	def process_events (self, is_seek: bool = False) -> bool:

		"""Dispatch the next row of every track that is due, then schedule the next one.

		Loop handling happens here: stack loops are entered, repeated or left,
		and reaching the end of the song (or the loop end) either stops playback or
		jumps back to the loop start.

		Parameters:
			is_seek: Skip note-on events (used while seeking).

		Returns:
			False once the song has ended.
		"""

		position = self._current_position

		if not position.track:
			self._at_end = True

		if self._at_end:
			return False

		interface = self._require_interface()
		loop = self.loop
		loop.caught_end = False

		row_begin_position = position.copy()
		do_loop_jump = False

		caught_loop_start = 0
		caught_stack_starts = 0
		caught_stack_ends = 0
		caught_stack_ends_time = 0.0
		caught_stack_breaks = 0

		for tk, info in enumerate(position.track):

			if info.last_handled_event < 0 or info.delay > 0:
				continue

			rows = self._timeline.tracks[tk]

			if info.pos >= len(rows):
				info.last_handled_event = -1
				continue

			row = rows[info.pos]

			for event in row.events:

				if is_seek and event.type == EventType.NOTE_ON:
					continue

				info.last_handled_event = self.handle_event(tk, event, info.last_handled_event)

				if loop.caught_start:
					if interface.on_loop_start is not None:
						interface.on_loop_start()
					caught_loop_start += 1
					loop.caught_start = False

				if loop.caught_stack_start:
					if interface.on_loop_start is not None and self._timeline.loop_start_time >= row.time:
						interface.on_loop_start()
					caught_stack_starts += 1
					loop.caught_stack_start = False

				if loop.caught_stack_break:
					caught_stack_breaks += 1
					loop.caught_stack_break = False

				if loop.caught_end or loop.is_stack_end():
					if loop.caught_stack_end:
						loop.caught_stack_end = False
						caught_stack_ends += 1
						caught_stack_ends_time = row.time
					do_loop_jump = True
					break

			if info.last_handled_event >= 0:
				info.delay += row.delay
				info.pos += 1

			if do_loop_jump:
				break

		shortest_delay, found = position.schedule_next()
		position.wait += float(shortest_delay * self._tempo)

		if caught_loop_start > 0 and self._loop_begin_position.absolute_time_position <= 0.0:
			self._loop_begin_position = row_begin_position

		if caught_stack_starts > 0:
			for _ in range(caught_stack_starts):
				loop.stack_up()
				loop.get_current_stack().start_position = row_begin_position
			return True

		for _ in range(caught_stack_breaks):
			entry = loop.get_current_stack()
			entry.loops = 0
			entry.infinity = False
			loop.stack_down()

		if caught_stack_ends > 0:

			for _ in range(caught_stack_ends):

				entry = loop.get_current_stack()

				if entry.infinity:

					if interface.on_loop_end is not None and self._timeline.loop_end_time >= caught_stack_ends_time:

						interface.on_loop_end()

						if self._loop_hooks_only:
							self._finish(position)
							self._all_notes_off()
							return True

					self._jump_to_stack_start(entry)
					return True

				if entry.loops >= 0:
					entry.loops -= 1
					if entry.loops > 0:
						self._jump_to_stack_start(entry)
						return True

				loop.stack_down()

			return True

		if not found or loop.caught_end:

			if interface.on_loop_end is not None:
				interface.on_loop_end()

			self._all_notes_off()
			loop.caught_end = False

			song_finished = not found and loop.loops_count >= 0 and loop.loops_left < 1

			if not self._loop_enabled or song_finished or self._loop_hooks_only:
				self._finish(position)
				return True

			if loop.temporary_broken:
				self._current_position = self._track_begin_position.copy()
				self._tempo = self._timeline.initial_tempo
				loop.temporary_broken = False

			elif loop.loops_count < 0 or loop.loops_left >= 1:
				self._current_position = self._loop_begin_position.copy()
				if loop.loops_count >= 1:
					loop.loops_left -= 1

		return True

	def _finish (self, position: midiseq.events.Position) -> None:

		self._at_end = True
		position.wait += self._post_song_wait_delay

	def _jump_to_stack_start (self, entry: midiseq.loop.LoopStackEntry) -> None:

		"""Rewind to the row that opened a stack loop."""

		if entry.start_position is not None:
			self._current_position = entry.start_position.copy()
			self.loop.skip_stack_start = True

		self._all_notes_off()

	def _all_notes_off (self) -> None:

		interface = self._require_interface()

		for channel in range(midiseq.constants.MIDI_CHANNELS):
			interface.controller_change(channel, midiseq.constants.CC_ALL_NOTES_OFF, 0)

	def handle_event (self, track: int, event: midiseq.events.MidiEvent, status: int) -> int:

		"""Send one event to the output interface and update the loop flags.

		Returns:
			The track's new status: -1 after its end, the event type after a
			channel event, otherwise ``status`` unchanged.
		"""

		interface = self._require_interface()

		timing_event = (
			track == 0
			and self._smf_format < 2
			and event.type == EventType.SPECIAL
			and event.sub_type in (MetaType.TEMPO_CHANGE, MetaType.TIME_SIGNATURE)
		)

		# Timing events on the first track of format 0/1 files are never muted
		if not timing_event:
			if self._track_solo is not None and track != self._track_solo:
				return status
			if track < len(self._track_disabled) and self._track_disabled[track]:
				return status

		if interface.on_event is not None:
			interface.on_event(event.type, event.sub_type, event.channel, event.data)

		if event.type in (EventType.SYSEX, EventType.SYSEX2):
			interface.system_exclusive(event.data)
			return status

		if event.type == EventType.SPECIAL:
			return self._handle_meta_event(track, event, status)

		if event.type in (EventType.SYS_COM_SONG_SELECT, EventType.SYS_COM_SONG_POSITION_POINTER):
			return status

		channel = event.channel

		if interface.current_device is not None:
			channel += interface.current_device(track)

		status = event.type
		channel_disabled = channel < midiseq.constants.MIDI_CHANNELS and self._channel_disabled[channel]

		if event.type == EventType.NOTE_OFF:
			if not channel_disabled:
				if interface.note_off is not None:
					interface.note_off(channel, event.note)
				if interface.note_off_vel is not None:
					interface.note_off_vel(channel, event.note, event.velocity)

		elif event.type == EventType.NOTE_ON:
			if not channel_disabled:
				interface.note_on(channel, event.note, event.velocity)

		elif event.type == EventType.NOTE_TOUCH:
			interface.note_after_touch(channel, event.note, event.data[1])

		elif event.type == EventType.CONTROL_CHANGE:
			interface.controller_change(channel, event.data[0], event.data[1])

		elif event.type == EventType.PATCH_CHANGE:
			interface.patch_change(channel, event.data[0])

		elif event.type == EventType.CHANNEL_AFTERTOUCH:
			interface.channel_after_touch(channel, event.data[0])

		elif event.type == EventType.PITCH_WHEEL:
			# Data is LSB first on the wire
			interface.pitch_bend(channel, event.data[1], event.data[0])

		return status

	def _handle_meta_event (self, track: int, event: midiseq.events.MidiEvent, status: int) -> int:

		interface = self._require_interface()
		loop = self.loop
		sub_type = event.sub_type

		if interface.meta_event is not None:
			interface.meta_event(sub_type, event.data)

		if sub_type == MetaType.END_TRACK:
			return -1

		if sub_type == MetaType.TEMPO_CHANGE:
			self._tempo = self._timeline.tempo_from_event(event)
			return status

		if sub_type == MetaType.MARKER:
			return status

		if sub_type == MetaType.DEVICE_SWITCH:
			self._debug(f"Switching another device: {event.data.decode('latin-1')}")
			if interface.device_switch is not None:
				interface.device_switch(track, event.data)
			return status

		if self._loop_enabled and not loop.invalid_loop:

			if sub_type == MetaType.LOOP_START:
				loop.caught_start = True
				return status

			if sub_type == MetaType.LOOP_END:
				loop.caught_end = True
				return status

			if sub_type == MetaType.LOOP_STACK_BEGIN:

				if loop.skip_stack_start:
					loop.skip_stack_start = False
					return status

				loops = event.data[0] if event.data else 0
				level = loop.stack_level + 1

				while level >= len(loop.stack):
					loop.stack.append(midiseq.loop.LoopStackEntry(infinity=loops == 0, loops=loops))

				entry = loop.stack[level]
				entry.loops = loops
				entry.infinity = loops == 0
				loop.caught_stack_start = True
				return status

			if sub_type == MetaType.LOOP_STACK_END:
				loop.caught_stack_end = True
				return status

			if sub_type == MetaType.LOOP_STACK_BREAK:
				loop.caught_stack_break = True
				return status

		if sub_type == MetaType.CALLBACK_TRIGGER:
			if self._trigger_handler is not None:
				self._trigger_handler(event.data[0] if event.data else 0, track)
			return status

		if sub_type == MetaType.SONG_BEGIN_HOOK:
			if interface.on_song_start is not None:
				interface.on_song_start()
			return status

		return status

	# --- Helpers ---

	def _require_interface (self) -> midiseq.interface.MidiOutputInterface:

		if self._interface is None:
			raise ValueError("No MIDI output interface set - call set_interface() first")

		return self._interface

	def _debug (self, message: str) -> None:

		logger.debug(message)

		if self._interface is not None and self._interface.on_debug_message is not None:
			self._interface.on_debug_message(message)
