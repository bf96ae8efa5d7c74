"""Conversion of raw track data into timed rows of events.

``Timeline.build`` parses every track into rows (events sharing one tick plus the
delay to the next row), validates the loop markers in a single pass, then converts
tick positions into seconds using the tempo map.  Tempo is held as an exact
``fractions.Fraction`` of seconds per tick so long songs do not drift.
"""

import fractions
import logging
import typing

import midiseq.binary
import midiseq.constants
import midiseq.events
import midiseq.loop
import midiseq.parser
import midiseq.smf

from midiseq.constants import EventType, MetaType


logger = logging.getLogger(__name__)


class Timeline:

	"""
	The playable form of one song.

	Holds the rows of every track, the tempo at the start of the song, song
	metadata, markers, loop point times and the two position snapshots playback
	rewinds to: the very beginning and the loop start.
	"""

	def __init__ (
		self,
		division: int,
		loop: midiseq.loop.LoopState,
		debug: typing.Optional[typing.Callable[[str], None]] = None,
		post_song_wait_delay: float = midiseq.constants.DEFAULT_POST_SONG_WAIT_DELAY
	) -> None:

		"""Create an empty timeline.

		Parameters:
			division: Ticks per quarter note from the file header.
			loop: Loop state of the owning sequencer; filled in while building.
			debug: Receiver for diagnostic messages.
			post_song_wait_delay: Seconds of silence appended to the song length
				so trailing notes can decay.
		"""

		if division <= 0:
			raise ValueError("Division must be a positive number of ticks per quarter note")

		self.division = division
		self.loop = loop
		self.post_song_wait_delay = post_song_wait_delay

		self._debug_hook = debug

		# Seconds per tick is tick_delta * microseconds per quarter note
		self.individual_tick_delta = fractions.Fraction(1, 1000000 * division)

		# 120 BPM until the first tempo event
		self.initial_tempo = fractions.Fraction(1, division * 2)

		self.tracks: typing.List[typing.List[midiseq.events.MidiTrackRow]] = []
		self.markers: typing.List[midiseq.events.MidiMarkerEntry] = []

		self.music_title = ""
		self.music_copyright = ""
		self.track_titles: typing.List[str] = []

		self.full_song_time_length = 0.0
		self.loop_start_time = -1.0
		self.loop_end_time = -1.0

		self.track_begin_position = midiseq.events.Position()
		self.loop_begin_position = midiseq.events.Position()

	def _debug (self, message: str) -> None:

		logger.debug(message)

		if self._debug_hook is not None:
			self._debug_hook(message)

	def tempo_from_event (self, event: midiseq.events.MidiEvent) -> fractions.Fraction:

		"""Seconds per tick set by a tempo change event."""

		return self.individual_tick_delta * midiseq.binary.read_int_big_endian(event.data)

	def build (self, raw_tracks: typing.Sequence[bytes]) -> None:

		"""Parse all tracks and compute the timing of every row.

		Raises:
			MidiLoadError: When a track cannot be parsed.  The message carries the
				parser's error log.
		"""

		track_count = len(raw_tracks)
		parser = midiseq.parser.EventParser(debug=self._debug_hook)
		loop = self.loop

		loop.reset()
		loop.invalid_loop = False

		self.tracks = []

		got_global_loop_start = False
		got_global_loop_end = False
		got_stack_loop_start = False
		got_loop_event_in_this_row = False

		loop_start_ticks = 0
		loop_end_ticks = 0
		song_length_ticks = 0

		tempos: typing.List[midiseq.events.MidiEvent] = []

		for tk, data in enumerate(raw_tracks):

			rows: typing.List[midiseq.events.MidiTrackRow] = []
			self.tracks.append(rows)

			cursor = midiseq.parser.TrackCursor(data=data)
			abs_position = 0

			# Notes sounding in this track, used to keep zero-length notes intact while sorting
			note_states: typing.Set[typing.Tuple[int, int]] = set()

			first_delay, ok = cursor.read_delay()

			if not ok:
				parser.errors.append(f"buildTrackData: Can't read variable-length value at begin of track {tk}.\n")
				raise self._parse_error(parser)

			first_row = midiseq.events.MidiTrackRow(delay=first_delay, absolute_position=abs_position)

			# Track 0 starts with a hook so controllers can be reset on every loop
			if tk == 0:
				first_row.events.append(midiseq.events.MidiEvent(type=EventType.SPECIAL, sub_type=MetaType.SONG_BEGIN_HOOK))

			abs_position += first_delay
			rows.append(first_row)

			row = midiseq.events.MidiTrackRow()

			while True:

				event = parser.parse_event(cursor)

				if not event.is_valid:
					parser.errors.append(f"buildTrackData: Fail to parse event in the track {tk}.\n")
					raise self._parse_error(parser)

				row.events.append(event)
				track_ended = event.is_meta(MetaType.END_TRACK)

				if event.type == EventType.SPECIAL:

					if event.sub_type == MetaType.TEMPO_CHANGE:
						event.absolute_tick_position = abs_position
						tempos.append(event)

					elif loop.invalid_loop:
						pass

					elif event.sub_type == MetaType.LOOP_START:

						# Only one loop start, never in the same row as a loop end
						if got_global_loop_start or got_loop_event_in_this_row:
							loop.invalid_loop = True
							self._debug("== Invalid loop detected! [Caught more than 1 loopStart or loopStart in same row as loopEnd] ==")
						else:
							got_global_loop_start = True
							loop_start_ticks = abs_position

						got_loop_event_in_this_row = True

					elif event.sub_type == MetaType.LOOP_END:

						if got_global_loop_end or got_loop_event_in_this_row:
							loop.invalid_loop = True
							reasons = []
							if got_global_loop_end:
								reasons.append("[Caught more than 1 loopEnd!]")
							if got_loop_event_in_this_row:
								reasons.append("[loopEnd in same row as loopStart!]")
							self._debug(f"== Invalid loop detected! {' '.join(reasons)} ==")
						else:
							got_global_loop_end = True
							loop_end_ticks = abs_position

						got_loop_event_in_this_row = True

					elif event.sub_type == MetaType.LOOP_STACK_BEGIN:

						if not got_stack_loop_start:
							if not got_global_loop_start:
								loop_start_ticks = abs_position
							got_stack_loop_start = True

						loop.stack_up()

						if loop.stack_level >= len(loop.stack):
							loops = event.data[0] if event.data else 0
							loop.stack.append(midiseq.loop.LoopStackEntry(
								infinity = loops == 0,
								loops = loops,
								start = abs_position,
								end = abs_position
							))

					elif event.sub_type in (MetaType.LOOP_STACK_END, MetaType.LOOP_STACK_BREAK):

						if loop.stack_level <= -1:
							loop.invalid_loop = True
							self._debug("== Invalid loop detected! [Caught loop end without of loop start] ==")
						else:
							if loop_end_ticks < abs_position:
								loop_end_ticks = abs_position
							loop.get_current_stack().end = abs_position
							loop.stack_down()

				if not track_ended:
					row.delay, ok = cursor.read_delay()
					if not ok:
						# Data ran out without an end-of-track event
						row.delay = 0
						track_ended = True

				if row.delay > 0 or track_ended:
					row.absolute_position = abs_position
					abs_position += row.delay
					row.sort_events(note_states)
					rows.append(row)
					row = midiseq.events.MidiTrackRow()
					got_loop_event_in_this_row = False

				if track_ended:
					break

			song_length_ticks = max(song_length_ticks, abs_position)

		self.music_title = parser.music_title
		self.music_copyright = parser.music_copyright
		self.track_titles = parser.track_titles

		if got_global_loop_start and not got_global_loop_end:
			got_global_loop_end = True
			loop_end_ticks = song_length_ticks

		if loop_start_ticks >= loop_end_ticks:
			loop.invalid_loop = True
			if got_global_loop_start or got_global_loop_end:
				self._debug("== Invalid loop detected! [loopEnd is going before loopStart] ==")

		self.track_begin_position = midiseq.events.Position(
			track = [midiseq.events.TrackInfo() for _ in range(track_count)]
		)

		tempos.sort(key=lambda tempo: tempo.absolute_tick_position)

		self.build_time_line(tempos, loop_start_ticks, loop_end_ticks)

		logger.debug(f"Built {track_count} tracks, {song_length_ticks} ticks, {self.full_song_time_length:.3f} seconds")

	def _parse_error (self, parser: midiseq.parser.EventParser) -> midiseq.smf.MidiLoadError:

		return midiseq.smf.MidiLoadError("MIDI Loader: MIDI data parsing error has occurred!\n" + "".join(parser.errors))

	def build_time_line (self, tempos: typing.Sequence[midiseq.events.MidiEvent], loop_start_ticks: int = 0, loop_end_ticks: int = 0) -> None:

		"""Assign a time and a duration in seconds to every row.

		When tempo changes fall between two rows, the earlier row's delay is split
		at each change and every piece is timed with the tempo in force for it.

		Parameters:
			tempos: Tempo change events sorted by absolute tick.
			loop_start_ticks: Tick of the loop start, used to record its time.
			loop_end_ticks: Tick of the loop end, used to record its time.
		"""

		self.markers = []
		self.full_song_time_length = 0.0
		self.loop_start_time = -1.0
		self.loop_end_time = -1.0

		for rows in self.tracks:

			if not rows:
				continue

			current_tempo = self.initial_tempo
			time = 0.0
			tempo_index = 0
			previous = rows[0]

			for row in rows:

				if row is not previous and tempo_index < len(tempos) and tempos[tempo_index].absolute_tick_position <= row.absolute_position:

					# Break points: where the previous row starts, then every tempo change up to this row
					points: typing.List[typing.Tuple[int, fractions.Fraction]] = [(previous.absolute_position, current_tempo)]

					while tempo_index < len(tempos) and tempos[tempo_index].absolute_tick_position <= row.absolute_position:
						tempo_event = tempos[tempo_index]
						points.append((tempo_event.absolute_tick_position, self.tempo_from_event(tempo_event)))
						tempo_index += 1

					time -= previous.time_delay
					previous.time_delay = 0.0

					for (start, _), (stop, tempo) in zip(points, points[1:]):
						previous.time_delay += float((stop - start) * current_tempo)
						current_tempo = tempo

					previous.time_delay += float((row.absolute_position - points[-1][0]) * current_tempo)
					previous.time = time
					time += previous.time_delay

				row.time_delay = float(row.delay * current_tempo)
				row.time = time
				time += row.time_delay

				for event in row.events:
					if event.is_meta(MetaType.MARKER):
						self.markers.append(midiseq.events.MidiMarkerEntry(
							label = midiseq.parser.decode_text(event.data),
							position_time = row.time,
							position_ticks = row.absolute_position
						))

				if not self.loop.invalid_loop:
					if loop_start_ticks == row.absolute_position:
						self.loop_start_time = row.time
					elif loop_end_ticks == row.absolute_position:
						self.loop_end_time = row.time

				previous = row

			self.full_song_time_length = max(self.full_song_time_length, time)

		self.full_song_time_length += self.post_song_wait_delay

		self.loop_begin_position = self.track_begin_position.copy()
		self.loop.stack_level = -1

		if not self.loop.invalid_loop and self.track_begin_position.track:
			self._find_loop_begin()

	def _find_loop_begin (self) -> None:

		"""Walk all tracks in playback order and park the loop-begin snapshot on the row holding the loop start."""

		row_position = self.track_begin_position.copy()

		while True:

			row_begin_position = row_position.copy()
			caught_loop_start = False

			for tk, info in enumerate(row_position.track):

				if info.last_handled_event < 0 or info.delay > 0:
					continue

				rows = self.tracks[tk]

				if info.pos >= len(rows):
					info.last_handled_event = -1
					continue

				if any(event.is_meta(MetaType.LOOP_START) for event in rows[info.pos].events):
					caught_loop_start = True

				info.delay += rows[info.pos].delay
				info.pos += 1

			_, found = row_position.schedule_next()

			if caught_loop_start:
				self.loop_begin_position = row_begin_position
				self.loop_begin_position.absolute_time_position = self.loop_start_time
				return

			if not found:
				return
