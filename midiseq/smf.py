"""Standard MIDI File chunk reader.

Only the chunk framing is handled here.  Track bodies are returned as opaque
byte strings; decoding them into events is the timeline builder's job.
"""

import dataclasses
import logging
import typing

import midiseq.binary
import midiseq.constants


logger = logging.getLogger(__name__)


class MidiLoadError (ValueError):

	"""Raised when music data cannot be loaded.  The message is user-facing."""


@dataclasses.dataclass
class SmfData:

	"""Header fields and raw track chunks of a Standard MIDI File."""

	format: int
	division: int
	tracks: typing.List[bytes]


def parse_smf (data: bytes) -> SmfData:

	"""Split a Standard MIDI File into its header values and raw track data.

	The format is clamped to 0-2 (anything else is treated as format 1).

	Raises:
		MidiLoadError: On a truncated header, a missing ``MThd``/``MTrk`` signature,
			a truncated track chunk, or when no track carries any data.
	"""

	header_size = midiseq.constants.SMF_HEADER_SIZE

	if len(data) < header_size:
		raise MidiLoadError("Unexpected end of file at header!\n")

	if data[:8] != midiseq.constants.SMF_HEADER_MAGIC:
		raise MidiLoadError("MIDI Loader: Invalid format, MThd signature is not found!\n")

	smf_format = midiseq.binary.read_int_big_endian(data[8:10])
	track_count = midiseq.binary.read_int_big_endian(data[10:12])
	division = midiseq.binary.read_int_big_endian(data[12:14])

	if smf_format > 2:
		smf_format = 1

	if division == 0:
		raise MidiLoadError("MIDI Loader: Invalid format, zero ticks per quarter note!\n")

	tracks: typing.List[bytes] = []
	pos = header_size
	total = 0

	for _ in range(track_count):

		chunk_header = data[pos:pos + midiseq.constants.SMF_TRACK_HEADER_SIZE]

		if len(chunk_header) < midiseq.constants.SMF_TRACK_HEADER_SIZE or chunk_header[:4] != midiseq.constants.SMF_TRACK_MAGIC:
			raise MidiLoadError("MIDI Loader: Invalid format, MTrk signature is not found!\n")

		track_length = midiseq.binary.read_int_big_endian(chunk_header[4:8])
		pos += midiseq.constants.SMF_TRACK_HEADER_SIZE

		track = data[pos:pos + track_length]

		if len(track) < track_length:
			raise MidiLoadError("MIDI Loader: Unexpected file ending while getting raw track data!\n")

		tracks.append(bytes(track))
		pos += track_length
		total += track_length

	if total == 0:
		raise MidiLoadError("MIDI Loader: Empty track data")

	logger.debug(f"SMF format {smf_format}, {track_count} tracks, division {division}")

	return SmfData(format=smf_format, division=division, tracks=tracks)
