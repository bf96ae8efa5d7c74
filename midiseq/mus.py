"""DMX MUS to Standard MIDI File conversion.

MUS is the compact score format of the DMX sound library used by Doom-era games.
It has no tempo (events tick at a fixed 140 Hz), up to 15 melodic channels plus a
dedicated percussion channel (15), and its own controller numbering.  The converter
produces an equivalent format-0 SMF that the regular SMF loader then reads, so MUS
playback needs no code path of its own past this point.
"""

import dataclasses
import logging
import struct

import midiseq.binary
import midiseq.constants
import midiseq.smf


logger = logging.getLogger(__name__)


class MusConversionError (midiseq.smf.MidiLoadError):

	"""Raised when a MUS score cannot be converted."""


@dataclasses.dataclass
class MusHeader:

	"""The fixed 14-byte MUS header."""

	score_length: int
	score_start: int
	channels: int
	sec_channels: int
	instrument_count: int

	@classmethod
	def parse (cls, data: bytes) -> "MusHeader":

		"""Read and validate the header at the start of ``data``."""

		if len(data) < midiseq.constants.MUS_HEADER_SIZE:
			raise MusConversionError("MUS header is too short")

		if data[:4] != midiseq.constants.MUS_HEADER_MAGIC:
			raise MusConversionError("MIDI Loader: Invalid format, MUS\\x1A signature is not found!\n")

		score_length, score_start, channels, sec_channels, instrument_count = struct.unpack_from("<5H", data, 4)

		return cls(
			score_length = score_length,
			score_start = score_start,
			channels = channels,
			sec_channels = sec_channels,
			instrument_count = instrument_count
		)


class _ScoreReader:

	"""Byte cursor over the MUS score that refuses to run past the buffer."""

	def __init__ (self, data: bytes, pos: int) -> None:

		self.data = data
		self.pos = pos

	def next (self) -> int:

		if self.pos >= len(self.data):
			raise MusConversionError("MUS score ends in the middle of an event")

		byte = self.data[self.pos]
		self.pos += 1
		return byte


def convert_mus_to_midi (data: bytes, frequency: int = 0) -> bytes:

	"""Convert a MUS lump into a single-track Standard MIDI File.

	Parameters:
		data: The complete MUS lump, header included.
		frequency: Tick rate the score was authored for.  Delays are scaled by
			``140 / frequency``; 0 means the native 140 Hz.

	Returns:
		The SMF bytes.

	Raises:
		MusConversionError: On a bad header, a truncated score, more than 15
			primary channels, or an event or controller that has no MIDI equivalent.
	"""

	header = MusHeader.parse(data)

	if len(data) < header.score_length + header.score_start:
		raise MusConversionError("MUS data is shorter than its score")

	# Channel 15 is percussion and is not counted here
	if header.channels > midiseq.constants.MUS_MAX_CHANNELS - 1:
		raise MusConversionError(f"MUS score uses {header.channels} primary channels")

	if not frequency:
		frequency = midiseq.constants.MUS_FREQUENCY

	channel_map = [-1] * midiseq.constants.MUS_MAX_CHANNELS
	channel_volume = [0x40] * midiseq.constants.MUS_MAX_CHANNELS
	channel_map[midiseq.constants.MUS_PERCUSSION_CHANNEL] = midiseq.constants.MIDI_PERCUSSION_CHANNEL

	out = bytearray(b"MThd")
	out += struct.pack(">IHHH", 6, 0, 1, midiseq.constants.MUS_DIVISION)

	begin_track_pos = len(out)
	out += midiseq.constants.SMF_TRACK_MAGIC
	track_size_pos = len(out)
	out += b"\x00\x00\x00\x00"

	# Tempo meta event; the DMX constant is stored low byte first
	tempo = midiseq.constants.MUS_TEMPO
	out += bytes((0x00, 0xFF, 0x51, 0x03, tempo & 0xFF, (tempo >> 8) & 0xFF, (tempo >> 16) & 0xFF))

	# Percussion starts out at volume 100
	out += bytes((0x00, 0xB0 | midiseq.constants.MIDI_PERCUSSION_CHANNEL, 0x07, 100))

	reader = _ScoreReader(data, header.score_start)
	end = header.score_start + header.score_length
	current_channel = 0
	delta_time = 0
	controllers = midiseq.constants.MUS_TO_MIDI_CONTROLLERS

	while reader.pos < end:

		event = reader.next()
		channel = event & 0x0F
		kind = (event & 0x70) >> 4

		chunk = bytearray(midiseq.binary.write_variable_length(delta_time))

		if channel_map[channel] < 0:
			# First use of this channel: give it a MIDI channel at volume 100
			chunk += bytes((0xB0 + current_channel, 0x07, 100, 0x00))
			channel_map[channel] = current_channel
			current_channel += 1
			if current_channel == midiseq.constants.MIDI_PERCUSSION_CHANNEL:
				current_channel += 1

		midi_channel = channel_map[channel]

		if kind == midiseq.constants.MUS_EVENT_KEY_OFF:
			chunk += bytes((0x80 | midi_channel, reader.next() & 0x7F, 0x40))

		elif kind == midiseq.constants.MUS_EVENT_KEY_ON:
			key = reader.next()
			if key & 0x80:
				channel_volume[midi_channel] = reader.next() & 0x7F
			chunk += bytes((0x90 | midi_channel, key & 0x7F, channel_volume[midi_channel]))

		elif kind == midiseq.constants.MUS_EVENT_PITCH_WHEEL:
			wheel = reader.next()
			chunk += bytes((0xE0 | midi_channel, (wheel & 1) << 6, (wheel >> 1) & 0x7F))

		elif kind == midiseq.constants.MUS_EVENT_CHANNEL_MODE:
			controller = reader.next()
			if controller >= len(controllers):
				raise MusConversionError(f"Can't map MUS system event {controller} to MIDI")
			value = header.channels + 1 if controller == midiseq.constants.MUS_CONTROLLER_MONO else 0x00
			chunk += bytes((0xB0 | midi_channel, controllers[controller], value))

		elif kind == midiseq.constants.MUS_EVENT_CONTROLLER_CHANGE:
			controller = reader.next()
			if controller == 0:
				chunk += bytes((0xC0 | midi_channel, reader.next() & 0x7F))
			else:
				if controller >= len(controllers):
					raise MusConversionError(f"Can't map MUS controller {controller} to MIDI")
				value = reader.next()
				if value & 0x80:
					value = 0x7F
				chunk += bytes((0xB0 | midi_channel, controllers[controller], value))

		elif kind == midiseq.constants.MUS_EVENT_END:
			chunk += b"\xff\x2f\x00"
			out += chunk
			if reader.pos != end:
				logger.debug(f"MUS score end is off by {reader.pos - end} bytes")
			break

		else:
			raise MusConversionError(f"Unrecognized MUS event {event:#04x}")

		out += chunk

		delta_time = 0

		if event & 0x80:
			while True:
				byte = reader.next()
				delta_time = int((delta_time * 128 + (byte & 0x7F)) * (140.0 / frequency))
				if not byte & 0x80:
					break

	struct.pack_into(">I", out, track_size_pos, len(out) - begin_track_pos - midiseq.constants.SMF_TRACK_HEADER_SIZE)

	logger.debug(f"Converted MUS score ({header.score_length} bytes) into {len(out)} bytes of SMF")

	return bytes(out)
