"""Integer and variable-length quantity readers for raw MIDI data.

The fixed-width readers do no bounds checking of their own; callers check the
remaining length first.  ``read_variable_length`` is the only reader used on
untrusted track data and stops at ``end`` no matter what the continuation bits say.
"""

import typing


# Returned in place of a value when a variable-length quantity runs off the end of the data
VLQ_FAILURE = 2


def read_int_big_endian (buffer: bytes, nbytes: typing.Optional[int] = None) -> int:

	"""Read an unsigned integer, most significant byte first."""

	if nbytes is None:
		nbytes = len(buffer)

	result = 0

	for byte in buffer[:nbytes]:
		result = (result << 8) + byte

	return result


def read_int_little_endian (buffer: bytes, nbytes: typing.Optional[int] = None) -> int:

	"""Read an unsigned integer, least significant byte first."""

	if nbytes is None:
		nbytes = len(buffer)

	result = 0

	for n, byte in enumerate(buffer[:nbytes]):
		result += byte << (n * 8)

	return result


def read_variable_length (data: bytes, pos: int, end: int) -> typing.Tuple[int, int, bool]:

	"""Read a MIDI variable-length quantity starting at ``pos``.

	Each byte carries seven bits of the value; a set high bit means another byte
	follows.

	Returns:
		``(value, new_pos, ok)``.  When the data ends before the final byte,
		``ok`` is False and ``value`` is ``VLQ_FAILURE``.
	"""

	result = 0

	while True:

		if pos >= end:
			return VLQ_FAILURE, pos, False

		byte = data[pos]
		pos += 1
		result = (result << 7) + (byte & 0x7F)

		if not byte & 0x80:
			break

	return result, pos, True


def write_variable_length (value: int) -> bytes:

	"""Encode a non-negative integer as a MIDI variable-length quantity."""

	if value < 0:
		raise ValueError("Variable-length values cannot be negative")

	out = [value & 0x7F]
	value >>= 7

	while value > 0:
		out.append((value & 0x7F) | 0x80)
		value >>= 7

	return bytes(reversed(out))
