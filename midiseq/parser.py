"""Decoding of single events from raw SMF track data.

The parser carries state across a whole file: the running status of the track
being read, the song metadata found so far, and the loop dialect implied by the
loop controllers seen so far.  One ``EventParser`` is used per load.
"""

import dataclasses
import logging
import re
import typing

import midiseq.binary
import midiseq.constants
import midiseq.events

from midiseq.constants import EventType, LoopFormat, MetaType


logger = logging.getLogger(__name__)

_LEADING_INTEGER = re.compile(rb"\s*([+-]?\d+)")


@dataclasses.dataclass
class TrackCursor:

	"""Read position inside one track's raw bytes plus its running status."""

	data: bytes
	pos: int = 0
	status: int = 0

	@property
	def end (self) -> int:
		return len(self.data)

	def read_delay (self) -> typing.Tuple[int, bool]:

		"""Read the variable-length delay that precedes the next event."""

		value, self.pos, ok = midiseq.binary.read_variable_length(self.data, self.pos, self.end)
		return value, ok


def decode_text (data: bytes) -> str:

	"""Decode a meta-event text payload, falling back to Latin-1 for legacy files."""

	try:
		return data.decode("utf-8")
	except UnicodeDecodeError:
		return data.decode("latin-1")


def _leading_integer (data: bytes) -> int:

	"""Parse the leading decimal integer of ``data`` (0 when there is none)."""

	match = _LEADING_INTEGER.match(data)

	if match is None:
		return 0

	return int(match.group(1))


class EventParser:

	"""
	Stateful decoder for the events of every track in one file.

	Song metadata (title, copyright, track titles) is captured as it is found.
	Problems are appended to ``errors``; a failed event comes back with
	``is_valid`` set to False rather than raising, so the caller decides how to
	report it.
	"""

	def __init__ (self, debug: typing.Optional[typing.Callable[[str], None]] = None) -> None:

		"""
		Parameters:
			debug: Optional receiver for diagnostic messages (in addition to the
				module logger).
		"""

		self._debug_hook = debug

		self.loop_format = LoopFormat.DEFAULT
		self.errors: typing.List[str] = []

		self.music_title = ""
		self.music_copyright = ""
		self.track_titles: typing.List[str] = []

	def _debug (self, message: str) -> None:

		logger.debug(message)

		if self._debug_hook is not None:
			self._debug_hook(message)

	def _fail (self, event: midiseq.events.MidiEvent, message: str) -> midiseq.events.MidiEvent:

		self.errors.append(message)
		event.is_valid = False
		return event

	def parse_event (self, cursor: TrackCursor) -> midiseq.events.MidiEvent:

		"""Decode the event at the cursor and advance past it.

		Reaching the end of the data exactly at an event boundary yields an
		implied end-of-track event.
		"""

		event = midiseq.events.MidiEvent()
		data = cursor.data
		end = cursor.end

		if cursor.pos + 1 > end:
			event.type = EventType.SPECIAL
			event.sub_type = MetaType.END_TRACK
			return event

		byte = data[cursor.pos]
		cursor.pos += 1

		if byte in (EventType.SYSEX, EventType.SYSEX2):
			return self._parse_sysex(cursor, event, byte)

		if byte == EventType.SPECIAL:
			return self._parse_meta(cursor, event)

		# Running status: reuse the previous status byte
		if byte < 0x80:
			byte = (cursor.status | 0x80) & 0xFF
			cursor.pos -= 1

		if byte == EventType.SYS_COM_SONG_SELECT:
			if cursor.pos + 1 > end:
				return self._fail(event, "ParseEvent: Can't read System Command Song Select event - Unexpected end of track data.\n")
			event.type = byte
			event.data = data[cursor.pos:cursor.pos + 1]
			cursor.pos += 1
			return event

		if byte == EventType.SYS_COM_SONG_POSITION_POINTER:
			if cursor.pos + 2 > end:
				return self._fail(event, "ParseEvent: Can't read System Command Position Pointer event - Unexpected end of track data.\n")
			event.type = byte
			event.data = data[cursor.pos:cursor.pos + 2]
			cursor.pos += 2
			return event

		cursor.status = byte
		event.channel = byte & 0x0F
		event.type = (byte >> 4) & 0x0F

		if event.type in (EventType.NOTE_OFF, EventType.NOTE_ON, EventType.NOTE_TOUCH, EventType.CONTROL_CHANGE, EventType.PITCH_WHEEL):

			if cursor.pos + 2 > end:
				return self._fail(event, "ParseEvent: Can't read regular 2-byte event - Unexpected end of track data.\n")

			event.data = data[cursor.pos:cursor.pos + 2]
			cursor.pos += 2

			if event.type == EventType.NOTE_ON and event.data[1] == 0:
				event.type = EventType.NOTE_OFF

			elif event.type == EventType.CONTROL_CHANGE:
				self._apply_loop_controller(event)

			return event

		if event.type in (EventType.PATCH_CHANGE, EventType.CHANNEL_AFTERTOUCH):

			if cursor.pos + 1 > end:
				return self._fail(event, "ParseEvent: Can't read regular 1-byte event - Unexpected end of track data.\n")

			event.data = data[cursor.pos:cursor.pos + 1]
			cursor.pos += 1
			return event

		return event

	def _parse_sysex (self, cursor: TrackCursor, event: midiseq.events.MidiEvent, status: int) -> midiseq.events.MidiEvent:

		length, cursor.pos, ok = midiseq.binary.read_variable_length(cursor.data, cursor.pos, cursor.end)

		if not ok or cursor.pos + length > cursor.end:
			return self._fail(event, "ParseEvent: Can't read SysEx event - Unexpected end of track data.\n")

		event.type = EventType.SYSEX
		event.data = bytes((status,)) + cursor.data[cursor.pos:cursor.pos + length]
		cursor.pos += length
		return event

	def _parse_meta (self, cursor: TrackCursor, event: midiseq.events.MidiEvent) -> midiseq.events.MidiEvent:

		if cursor.pos >= cursor.end:
			return self._fail(event, "ParseEvent: Can't read Special event - Unexpected end of track data.\n")

		sub_type = cursor.data[cursor.pos]
		cursor.pos += 1

		length, cursor.pos, ok = midiseq.binary.read_variable_length(cursor.data, cursor.pos, cursor.end)

		if not ok or cursor.pos + length > cursor.end:
			return self._fail(event, "ParseEvent: Can't read Special event - Unexpected end of track data.\n")

		payload = cursor.data[cursor.pos:cursor.pos + length]
		cursor.pos += length

		event.type = EventType.SPECIAL
		event.sub_type = sub_type
		event.data = payload

		if sub_type == MetaType.COPYRIGHT:

			if not self.music_copyright:
				self.music_copyright = decode_text(payload)
				self._debug(f"Music copyright: {self.music_copyright}")
			else:
				self._debug(f"Extra copyright event: {decode_text(payload)}")

		elif sub_type == MetaType.SEQUENCE_TRACK_TITLE:

			if not self.music_title:
				self.music_title = decode_text(payload)
				self._debug(f"Music title: {self.music_title}")
			else:
				title = decode_text(payload)
				self.track_titles.append(title)
				self._debug(f"Track title: {title}")

		elif sub_type == MetaType.INSTRUMENT_TITLE:
			self._debug(f"Instrument: {decode_text(payload)}")

		elif sub_type == MetaType.MARKER:
			self._apply_loop_marker(event)

		elif sub_type == MetaType.END_TRACK:
			cursor.status = -1

		return event

	def _apply_loop_marker (self, event: midiseq.events.MidiEvent) -> None:

		"""Turn text markers naming loop points into loop events."""

		label = event.data.lower()

		if label == b"loopstart":
			event.sub_type = MetaType.LOOP_START
			event.data = b""

		elif label == b"loopend":
			event.sub_type = MetaType.LOOP_END
			event.data = b""

		elif label.startswith(b"loopstart="):
			loops = _leading_integer(label[10:]) & 0xFF
			event.sub_type = MetaType.LOOP_STACK_BEGIN
			event.data = bytes((loops,))
			self._debug(f"Stack marker loop start with {loops} loops")

		elif label.startswith(b"loopend="):
			event.sub_type = MetaType.LOOP_STACK_END
			event.data = b""
			self._debug("Stack marker loop end")

	def _apply_loop_controller (self, event: midiseq.events.MidiEvent) -> None:

		"""Resolve CC110/111/113 against the loop dialect seen so far in this file.

		The first CC110 marks an HMI-style loop start.  A second CC110 means the
		file is actually EMIDI, where those controllers are not loop points and
		CC113 stands in for CC7.  CC111 is a loop end for HMI and a loop start
		(RPG Maker style) for anything but EMIDI.
		"""

		controller = event.data[0]

		if controller == midiseq.constants.CC_LOOP_START:

			if self.loop_format == LoopFormat.DEFAULT:
				event.type = EventType.SPECIAL
				event.sub_type = MetaType.LOOP_START
				event.data = b""
				self.loop_format = LoopFormat.HMI

			elif self.loop_format == LoopFormat.HMI:
				self.loop_format = LoopFormat.EMIDI

		elif controller == midiseq.constants.CC_LOOP_END:

			if self.loop_format == LoopFormat.HMI:
				event.type = EventType.SPECIAL
				event.sub_type = MetaType.LOOP_END
				event.data = b""

			elif self.loop_format != LoopFormat.EMIDI:
				event.type = EventType.SPECIAL
				event.sub_type = MetaType.LOOP_START
				event.data = b""

		elif controller == midiseq.constants.CC_EMIDI_VOLUME:

			if self.loop_format == LoopFormat.EMIDI:
				event.data = bytes((midiseq.constants.CC_VOLUME,)) + event.data[1:]
