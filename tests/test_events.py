import typing

import midiseq.events

from midiseq.constants import EventType, MetaType


def _note (event_type: int, note: int, channel: int = 0) -> midiseq.events.MidiEvent:
	return midiseq.events.MidiEvent(type=event_type, channel=channel, data=bytes((note, 100)))


def _meta (sub_type: int) -> midiseq.events.MidiEvent:
	return midiseq.events.MidiEvent(type=EventType.SPECIAL, sub_type=sub_type)


def test_sort_events_order () -> None:

	"""SysEx, note-offs, markers, controllers, then everything else."""

	note_on = _note(EventType.NOTE_ON, 60)
	controller = midiseq.events.MidiEvent(type=EventType.CONTROL_CHANGE, data=bytes((7, 100)))
	note_off = _note(EventType.NOTE_OFF, 61)
	sysex = midiseq.events.MidiEvent(type=EventType.SYSEX, data=b"\xf0\x7e\xf7")
	marker = _meta(MetaType.LOOP_START)
	tempo = _meta(MetaType.TEMPO_CHANGE)

	row = midiseq.events.MidiTrackRow(events=[note_on, tempo, controller, note_off, sysex, marker])
	row.sort_events()

	assert row.events == [sysex, note_off, marker, controller, note_on, tempo]


def test_sort_events_is_stable_within_groups () -> None:

	"""Events of the same group keep their file order."""

	first = _note(EventType.NOTE_ON, 60)
	second = _note(EventType.NOTE_ON, 64)
	third = _note(EventType.NOTE_ON, 67)

	row = midiseq.events.MidiTrackRow(events=[first, second, third])
	row.sort_events()

	assert row.events == [first, second, third]


def test_zero_length_note_is_not_released_early () -> None:

	"""A note-off for a key that is not sounding moves after its note-on."""

	note_off = _note(EventType.NOTE_OFF, 60)
	note_on = _note(EventType.NOTE_ON, 60)
	note_states: typing.Set[typing.Tuple[int, int]] = set()

	row = midiseq.events.MidiTrackRow(events=[note_off, note_on])
	row.sort_events(note_states)

	assert row.events == [note_on, note_off]
	assert note_states == set()


def test_sounding_note_is_released_before_retrigger () -> None:

	"""When the key is already on, the note-off stays first and the key stays on."""

	note_off = _note(EventType.NOTE_OFF, 60)
	note_on = _note(EventType.NOTE_ON, 60)
	note_states = {(0, 60)}

	row = midiseq.events.MidiTrackRow(events=[note_on, note_off])
	row.sort_events(note_states)

	assert row.events == [note_off, note_on]
	assert note_states == {(0, 60)}


def test_note_states_follow_rows () -> None:

	"""Note-ons mark keys as sounding and note-offs clear them."""

	note_states: typing.Set[typing.Tuple[int, int]] = set()

	midiseq.events.MidiTrackRow(events=[_note(EventType.NOTE_ON, 60), _note(EventType.NOTE_ON, 62, channel=3)]).sort_events(note_states)
	assert note_states == {(0, 60), (3, 62)}

	midiseq.events.MidiTrackRow(events=[_note(EventType.NOTE_OFF, 60)]).sort_events(note_states)
	assert note_states == {(3, 62)}


def test_note_off_on_other_channel_is_untouched () -> None:

	"""Only note-offs for the same channel and key are reordered."""

	note_off = _note(EventType.NOTE_OFF, 60, channel=1)
	note_on = _note(EventType.NOTE_ON, 60, channel=0)

	row = midiseq.events.MidiTrackRow(events=[note_on, note_off])
	row.sort_events(set())

	assert row.events == [note_off, note_on]


def test_is_meta () -> None:

	"""Only special events match a meta sub-type."""

	assert _meta(MetaType.MARKER).is_meta(MetaType.MARKER)
	assert not _meta(MetaType.MARKER).is_meta(MetaType.END_TRACK)
	assert not midiseq.events.MidiEvent(type=EventType.NOTE_ON, sub_type=MetaType.MARKER).is_meta(MetaType.MARKER)


def test_position_copy_is_independent () -> None:

	"""Mutating a copy's track cursors leaves the source position alone."""

	position = midiseq.events.Position(wait=0.5, track=[midiseq.events.TrackInfo(delay=3, pos=1)])
	snapshot = position.copy()

	snapshot.track[0].pos = 7
	snapshot.wait = 0.0

	assert position.track[0].pos == 1
	assert position.wait == 0.5


def test_schedule_next_picks_shortest_live_delay () -> None:

	"""Finished tracks are ignored when choosing the next delay, but still count down."""

	position = midiseq.events.Position(track=[
		midiseq.events.TrackInfo(delay=5),
		midiseq.events.TrackInfo(delay=3),
		midiseq.events.TrackInfo(delay=1, last_handled_event=-1),
	])

	assert position.schedule_next() == (3, True)
	assert [info.delay for info in position.track] == [2, 0, -2]


def test_schedule_next_when_all_tracks_finished () -> None:

	"""No live track means nothing is found."""

	position = midiseq.events.Position(track=[midiseq.events.TrackInfo(delay=4, last_handled_event=-1)])

	assert position.schedule_next() == (0, False)
	assert position.track[0].delay == 4
