import mido
import pytest

import conftest
import midiseq.midi_utils
import midiseq.mido_output
import midiseq.sequencer


def test_interface_is_complete () -> None:

	"""The interface built by MidoOutput passes validation."""

	output = midiseq.mido_output.MidoOutput(conftest.FakeMidiOut())

	assert output.interface().missing_hooks() == []


def test_channel_messages () -> None:

	"""Each hook sends the matching mido message."""

	port = conftest.FakeMidiOut()
	output = midiseq.mido_output.MidoOutput(port)

	output.note_on(1, 60, 100)
	output.note_off(1, 60, 64)
	output.note_after_touch(2, 61, 10)
	output.channel_after_touch(3, 20)
	output.controller_change(4, 7, 90)
	output.patch_change(5, 12)

	assert port.sent == [
		mido.Message('note_on', channel=1, note=60, velocity=100),
		mido.Message('note_off', channel=1, note=60, velocity=64),
		mido.Message('polytouch', channel=2, note=61, value=10),
		mido.Message('aftertouch', channel=3, value=20),
		mido.Message('control_change', channel=4, control=7, value=90),
		mido.Message('program_change', channel=5, program=12),
	]


@pytest.mark.parametrize("msb, lsb, pitch", [
	(0x40, 0x00, 0),
	(0x00, 0x00, -8192),
	(0x7F, 0x7F, 8191),
])
def test_pitch_bend_is_centred (msb: int, lsb: int, pitch: int) -> None:

	"""The 14-bit wheel value is converted to mido's signed range."""

	port = conftest.FakeMidiOut()
	midiseq.mido_output.MidoOutput(port).pitch_bend(0, msb, lsb)

	assert port.sent[0].pitch == pitch


def test_system_exclusive_framing () -> None:

	"""The leading F0 and trailing F7 are removed before mido adds its own."""

	port = conftest.FakeMidiOut()
	midiseq.mido_output.MidoOutput(port).system_exclusive(b"\xf0\x7e\x7f\x09\x01\xf7")

	assert port.sent[0].type == 'sysex'
	assert port.sent[0].data == (0x7E, 0x7F, 0x09, 0x01)


def test_send_failure_is_logged_not_raised (caplog: pytest.LogCaptureFixture) -> None:

	"""A port that fails to send does not stop playback."""

	class BrokenPort (conftest.FakeMidiOut):

		def send (self, message: mido.Message) -> None:
			raise IOError("device unplugged")

	midiseq.mido_output.MidoOutput(BrokenPort()).note_on(0, 60, 100)

	assert "MIDI send of note_on failed" in caplog.text


def test_panic () -> None:

	"""Panic sends all-notes-off and all-sound-off on every channel, then resets the port."""

	port = conftest.FakeMidiOut()
	midiseq.mido_output.MidoOutput(port).panic()

	controls = [(m.channel, m.control) for m in port.sent]

	assert len(controls) == 32
	assert (0, 123) in controls
	assert (15, 120) in controls
	assert port.panicked


def test_close () -> None:

	"""Closing releases the port; later sends are ignored."""

	port = conftest.FakeMidiOut()
	output = midiseq.mido_output.MidoOutput(port)

	output.close()
	output.note_on(0, 60, 100)
	output.panic()

	assert port.closed
	assert port.sent == []


def test_plays_a_mido_written_file () -> None:

	"""A file written by mido plays through MidoOutput with the same notes."""

	data = conftest.build_mido_smf([
		mido.Message('program_change', program=3, time=0),
		mido.Message('note_on', note=64, velocity=90, time=0),
		mido.Message('note_off', note=64, velocity=0, time=96),
	])

	port = conftest.FakeMidiOut()
	sequencer = midiseq.sequencer.MidiSequencer(midiseq.mido_output.MidoOutput(port).interface())

	assert sequencer.load_midi(data)

	while not sequencer.position_at_end():
		sequencer.tick(0.01, 0.001)

	notes = [(m.type, m.note) for m in port.sent if m.type in ('note_on', 'note_off')]

	assert notes == [('note_on', 64), ('note_off', 64)]
	assert port.sent[0] == mido.Message('program_change', program=3)


def test_select_output_device_single_port (patch_midi: list) -> None:

	"""With a single port available it is used without asking."""

	name, port = midiseq.midi_utils.select_output_device()

	assert name == "Dummy MIDI"
	assert port is patch_midi[0]


def test_select_output_device_by_name (patch_midi: list) -> None:

	"""A named port must exist."""

	assert midiseq.midi_utils.select_output_device("Dummy MIDI")[0] == "Dummy MIDI"
	assert midiseq.midi_utils.select_output_device("Missing") == (None, None)


def test_select_output_device_prompts (monkeypatch: pytest.MonkeyPatch, patch_midi: list) -> None:

	"""With several ports the user picks one by number."""

	monkeypatch.setattr(mido, "get_output_names", lambda: ["First", "Second"])
	monkeypatch.setattr("builtins.input", lambda prompt: "2")

	name, _ = midiseq.midi_utils.select_output_device()

	assert name == "Second"


def test_select_output_device_non_interactive (monkeypatch: pytest.MonkeyPatch, patch_midi: list) -> None:

	"""Without a console the first port is used."""

	monkeypatch.setattr(mido, "get_output_names", lambda: ["First", "Second"])

	assert midiseq.midi_utils.select_output_device(interactive=False)[0] == "First"


def test_select_output_device_no_ports (monkeypatch: pytest.MonkeyPatch, patch_midi: list) -> None:

	"""No ports at all is reported as (None, None)."""

	monkeypatch.setattr(mido, "get_output_names", lambda: [])

	assert midiseq.midi_utils.select_output_device() == (None, None)
