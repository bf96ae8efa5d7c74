import logging
import typing

import mido

import midiseq.constants
import midiseq.interface


logger = logging.getLogger(__name__)


class MidoOutput:

	"""
	Sends the sequencer's events to a mido output port.

	Example:
		```python
		port = mido.open_output("Synth")
		output = midiseq.mido_output.MidoOutput(port)
		sequencer = midiseq.MidiSequencer(output.interface())
		```
	"""

	def __init__ (self, port: typing.Any) -> None:

		"""
		Parameters:
			port: An open mido output port (anything with ``send()``).
		"""

		self.port = port

	def interface (self) -> midiseq.interface.MidiOutputInterface:

		"""Build an output interface whose hooks write to this port."""

		return midiseq.interface.MidiOutputInterface(
			note_on = self.note_on,
			note_off_vel = self.note_off,
			note_after_touch = self.note_after_touch,
			channel_after_touch = self.channel_after_touch,
			controller_change = self.controller_change,
			patch_change = self.patch_change,
			pitch_bend = self.pitch_bend,
			system_exclusive = self.system_exclusive,
			on_debug_message = self.debug_message
		)

	def _send (self, message_type: str, **fields: typing.Any) -> None:

		if self.port is None:
			return

		try:
			self.port.send(mido.Message(message_type, **fields))
		except Exception:
			logger.exception(f"MIDI send of {message_type} failed (device may be disconnected)")

	def note_on (self, channel: int, note: int, velocity: int) -> None:
		self._send('note_on', channel=channel, note=note, velocity=velocity)

	def note_off (self, channel: int, note: int, velocity: int) -> None:
		self._send('note_off', channel=channel, note=note, velocity=velocity)

	def note_after_touch (self, channel: int, note: int, value: int) -> None:
		self._send('polytouch', channel=channel, note=note, value=value)

	def channel_after_touch (self, channel: int, value: int) -> None:
		self._send('aftertouch', channel=channel, value=value)

	def controller_change (self, channel: int, control: int, value: int) -> None:
		self._send('control_change', channel=channel, control=control, value=value)

	def patch_change (self, channel: int, program: int) -> None:
		self._send('program_change', channel=channel, program=program)

	def pitch_bend (self, channel: int, msb: int, lsb: int) -> None:

		"""Send a pitch wheel message; mido centres the 14-bit value on 0."""

		self._send('pitchwheel', channel=channel, pitch=((msb << 7) | lsb) - 8192)

	def system_exclusive (self, message: bytes) -> None:

		"""Send a SysEx message.  mido adds the F0/F7 framing itself."""

		data = message[1:]

		if data and data[-1] == 0xF7:
			data = data[:-1]

		self._send('sysex', data=data)

	def debug_message (self, message: str) -> None:
		logger.debug(message)

	def panic (self) -> None:

		"""
		Silence every channel.
		"""

		if self.port is None:
			return

		logger.info("Panic: sending all notes off.")

		try:

			for channel in range(midiseq.constants.MIDI_CHANNELS):
				self.port.send(mido.Message('control_change', channel=channel, control=midiseq.constants.CC_ALL_NOTES_OFF, value=0))
				self.port.send(mido.Message('control_change', channel=channel, control=midiseq.constants.CC_ALL_SOUND_OFF, value=0))

			self.port.panic()
			self.port.reset()

		except Exception:
			logger.exception("MIDI panic failed (device may be disconnected)")

	def close (self) -> None:

		if self.port is not None:
			self.port.close()
			self.port = None
