import dataclasses
import typing

import midiseq.constants

from midiseq.constants import EventType, MetaType


@dataclasses.dataclass
class MidiEvent:

	"""
	One MIDI or meta event as stored in a track row.

	``type`` is an ``EventType`` value, ``sub_type`` a ``MetaType`` value (only
	meaningful when ``type`` is ``EventType.SPECIAL``).  ``data`` holds the raw
	payload: the one or two data bytes of a channel event, the full message of a
	SysEx (status byte included), or the body of a meta event.
	"""

	type: int = EventType.UNKNOWN
	sub_type: int = MetaType.UNKNOWN
	channel: int = 0
	data: bytes = b""
	is_valid: bool = True
	absolute_tick_position: int = 0

	def is_meta (self, sub_type: int) -> bool:

		"""True when this is a special event of the given sub-type."""

		return self.type == EventType.SPECIAL and self.sub_type == sub_type

	@property
	def note (self) -> int:
		return self.data[0]

	@property
	def velocity (self) -> int:
		return self.data[1]


@dataclasses.dataclass
class MidiTrackRow:

	"""
	A chain of events sharing one tick position, followed by a delay to the next row.
	"""

	time: float = 0.0
	delay: int = 0
	absolute_position: int = 0
	time_delay: float = 0.0
	events: typing.List[MidiEvent] = dataclasses.field(default_factory=list)

	def sort_events (self, note_states: typing.Optional[typing.Set[typing.Tuple[int, int]]] = None) -> None:

		"""Order events so simultaneous messages reach the synth in a safe sequence.

		SysEx comes first, then note-offs, then markers and loop points, then
		controllers, then everything else (note-ons included).  That puts
		controller and patch state in place before notes start and releases old
		notes before new ones.

		Parameters:
			note_states: Set of ``(channel, note)`` keys currently sounding in this
				track.  When given, a note-off that shares the row with a note-on for
				the same key is moved after the note-on if the key was not already
				sounding (or when the row holds more than one note-off for it), so the
				zero-length note is not released before it starts.  The set is updated
				with the state after this row.
		"""

		sysex: typing.List[MidiEvent] = []
		metas: typing.List[MidiEvent] = []
		note_offs: typing.List[MidiEvent] = []
		controllers: typing.List[MidiEvent] = []
		any_other: typing.List[MidiEvent] = []

		for event in self.events:

			if event.type == EventType.NOTE_OFF:
				note_offs.append(event)

			elif event.type in (EventType.SYSEX, EventType.SYSEX2):
				sysex.append(event)

			elif event.type in midiseq.constants.ROW_CONTROLLER_TYPES:
				controllers.append(event)

			elif event.type == EventType.SPECIAL and event.sub_type in midiseq.constants.ROW_META_TYPES:
				metas.append(event)

			else:
				any_other.append(event)

		if note_states is not None:

			mark_as_on: typing.Set[typing.Tuple[int, int]] = set()
			note_ons = [event for event in any_other if event.type == EventType.NOTE_ON]

			for note_on in note_ons:

				key = (note_on.channel, note_on.note & 0x7F)
				was_on = key in note_states
				mark_as_on.add(key)
				offs_on_same_note = 0
				kept: typing.List[MidiEvent] = []

				for note_off in note_offs:

					if note_off.channel == note_on.channel and note_off.note == note_on.note:

						if not was_on or offs_on_same_note != 0:
							any_other.append(note_off)
							mark_as_on.discard(key)
							continue

						offs_on_same_note += 1

					kept.append(note_off)

				note_offs = kept

			for note_off in note_offs:
				note_states.discard((note_off.channel, note_off.note & 0x7F))

			note_states.update(mark_as_on)

		self.events = sysex + note_offs + metas + controllers + any_other


@dataclasses.dataclass
class TrackInfo:

	"""Playback cursor of a single track."""

	delay: int = 0
	last_handled_event: int = 0
	pos: int = 0


@dataclasses.dataclass
class Position:

	"""
	Song position: one cursor per track plus the time bookkeeping shared by all.

	Snapshots of a position are taken with ``copy()``; restoring one must also
	copy, since the cursors are mutated in place during playback.
	"""

	wait: float = 0.0
	absolute_time_position: float = 0.0
	track: typing.List[TrackInfo] = dataclasses.field(default_factory=list)

	def copy (self) -> "Position":

		"""Return an independent snapshot of this position."""

		return Position(
			wait = self.wait,
			absolute_time_position = self.absolute_time_position,
			track = [dataclasses.replace(info) for info in self.track]
		)

	def schedule_next (self) -> typing.Tuple[int, bool]:

		"""Subtract the shortest pending delay of all live tracks from every track.

		Returns:
			``(shortest_delay, found)``.  ``found`` is False when every track has
			finished.
		"""

		shortest_delay = 0
		found = False

		for info in self.track:
			if info.last_handled_event >= 0 and (not found or info.delay < shortest_delay):
				shortest_delay = info.delay
				found = True

		for info in self.track:
			info.delay -= shortest_delay

		return shortest_delay, found


@dataclasses.dataclass
class MidiMarkerEntry:

	"""A marker meta event with its position in ticks and seconds."""

	label: str
	position_time: float
	position_ticks: int
