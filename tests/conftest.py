import io
import struct
import typing

import mido
import pytest

import midiseq.binary
import midiseq.interface
import midiseq.sequencer


class RecordingInterface:

	"""Output interface stub that records every call as a tuple."""

	def __init__ (self) -> None:

		self.calls: typing.List[typing.Tuple[typing.Any, ...]] = []
		self.debug_messages: typing.List[str] = []

	def interface (self, **overrides: typing.Any) -> midiseq.interface.MidiOutputInterface:

		"""Build an interface whose hooks append to ``calls``."""

		hooks: typing.Dict[str, typing.Any] = dict(
			note_on = lambda ch, note, vel: self.calls.append(("note_on", ch, note, vel)),
			note_off = lambda ch, note: self.calls.append(("note_off", ch, note)),
			note_after_touch = lambda ch, note, val: self.calls.append(("note_after_touch", ch, note, val)),
			channel_after_touch = lambda ch, val: self.calls.append(("channel_after_touch", ch, val)),
			controller_change = lambda ch, cc, val: self.calls.append(("cc", ch, cc, val)),
			patch_change = lambda ch, patch: self.calls.append(("patch", ch, patch)),
			pitch_bend = lambda ch, msb, lsb: self.calls.append(("pitch_bend", ch, msb, lsb)),
			system_exclusive = lambda data: self.calls.append(("sysex", bytes(data))),
			on_loop_start = lambda: self.calls.append(("loop_start",)),
			on_loop_end = lambda: self.calls.append(("loop_end",)),
			on_song_start = lambda: self.calls.append(("song_start",)),
			on_debug_message = self.debug_messages.append,
		)

		hooks.update(overrides)

		return midiseq.interface.MidiOutputInterface(**hooks)

	def named (self, name: str) -> typing.List[typing.Tuple[typing.Any, ...]]:

		"""Recorded calls of one kind."""

		return [call for call in self.calls if call[0] == name]


@pytest.fixture
def recorder () -> RecordingInterface:

	"""A fresh recording output."""

	return RecordingInterface()


@pytest.fixture
def sequencer (recorder: RecordingInterface) -> midiseq.sequencer.MidiSequencer:

	"""A sequencer wired to the recording output."""

	return midiseq.sequencer.MidiSequencer(recorder.interface())


def vlq (value: int) -> bytes:
	return midiseq.binary.write_variable_length(value)


def meta (delta: int, sub_type: int, payload: bytes = b"") -> bytes:

	"""Raw meta event preceded by its delta time."""

	return vlq(delta) + bytes((0xFF, sub_type)) + vlq(len(payload)) + payload


def channel_event (delta: int, status: int, *data: int) -> bytes:
	return vlq(delta) + bytes((status,) + data)


def tempo (delta: int, microseconds: int) -> bytes:
	return meta(delta, 0x51, microseconds.to_bytes(3, "big"))


def end_of_track (delta: int = 0) -> bytes:
	return meta(delta, 0x2F)


def build_smf (tracks: typing.Sequence[bytes], division: int = 96, smf_format: int = 1) -> bytes:

	"""Assemble a Standard MIDI File from raw track bodies."""

	data = b"MThd" + struct.pack(">IHHH", 6, smf_format, len(tracks), division)

	for body in tracks:
		data += b"MTrk" + struct.pack(">I", len(body)) + body

	return data


def build_mus (score: bytes, channels: int = 1) -> bytes:

	"""Assemble a MUS lump with an empty instrument list."""

	header_size = 16
	return b"MUS\x1a" + struct.pack("<6H", len(score), header_size, channels, 0, 0, 0) + score


def build_mido_smf (messages: typing.Sequence[mido.Message], ticks_per_beat: int = 96, tempo_value: int = 500000) -> bytes:

	"""Write a single-track file with mido and return its bytes."""

	midi_file = mido.MidiFile(type=0, ticks_per_beat=ticks_per_beat)
	track = mido.MidiTrack()
	track.append(mido.MetaMessage('set_tempo', tempo=tempo_value, time=0))
	track.extend(messages)
	midi_file.tracks.append(track)

	buffer = io.BytesIO()
	midi_file.save(file=buffer)
	return buffer.getvalue()


class FakeMidiOut:

	"""Minimal mido output port stub that keeps what it was sent."""

	def __init__ (self) -> None:

		self.sent: typing.List[mido.Message] = []
		self.closed = False
		self.panicked = False

	def send (self, message: mido.Message) -> None:
		self.sent.append(message)

	def close (self) -> None:
		self.closed = True

	def panic (self) -> None:
		self.panicked = True

	def reset (self) -> None:
		return None


_opened_ports: typing.List[FakeMidiOut] = []


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: typing.Optional[str] = None) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	port = FakeMidiOut()
	_opened_ports.append(port)
	return port


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> typing.List[FakeMidiOut]:

	"""Patch mido to use fake MIDI output ports; returns the ports opened so far."""

	_opened_ports.clear()
	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)
	return _opened_ports
