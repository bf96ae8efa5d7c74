"""Event tags and fixed values shared by the parsers and the playback engine.

Event ``type`` values are the high nibble of a channel status byte (``0x08``-``0x0E``)
or the full status byte for system and meta events.  Meta ``sub_type`` values above
``0xE0`` are not part of the SMF standard - they are synthesized by the parser from
loop markers (text markers, HMI/EMIDI controllers) and are only meaningful inside
this package.
"""

import enum


class EventType (enum.IntEnum):

	"""Main MIDI event types."""

	UNKNOWN = 0x00
	NOTE_OFF = 0x08
	NOTE_ON = 0x09
	NOTE_TOUCH = 0x0A
	CONTROL_CHANGE = 0x0B
	PATCH_CHANGE = 0x0C
	CHANNEL_AFTERTOUCH = 0x0D
	PITCH_WHEEL = 0x0E
	SYSEX = 0xF0
	SYS_COM_SONG_POSITION_POINTER = 0xF2
	SYS_COM_SONG_SELECT = 0xF3
	SYSEX2 = 0xF7
	SPECIAL = 0xFF


class MetaType (enum.IntEnum):

	"""Sub-types of ``EventType.SPECIAL`` events."""

	UNKNOWN = 0x00
	SEQUENCE_NUMBER = 0x00
	TEXT = 0x01
	COPYRIGHT = 0x02
	SEQUENCE_TRACK_TITLE = 0x03
	INSTRUMENT_TITLE = 0x04
	LYRICS = 0x05
	MARKER = 0x06
	CUE_POINT = 0x07
	DEVICE_SWITCH = 0x09
	MIDI_CHANNEL_PREFIX = 0x20
	END_TRACK = 0x2F
	TEMPO_CHANGE = 0x51
	SMPTE_OFFSET = 0x54
	TIME_SIGNATURE = 0x55
	KEY_SIGNATURE = 0x59
	SEQUENCER_SPEC = 0x7F

	# Non-standard, synthesized by the parser
	LOOP_START = 0xE1
	LOOP_END = 0xE2
	LOOP_STACK_BEGIN = 0xE4
	LOOP_STACK_END = 0xE5
	LOOP_STACK_BREAK = 0xE6
	CALLBACK_TRIGGER = 0xE7

	# Built-in hooks
	SONG_BEGIN_HOOK = 0x101


class LoopFormat (enum.IntEnum):

	"""Dialect of loop points expressed through controller events."""

	DEFAULT = 0
	RPG_MAKER = 1
	EMIDI = 2
	HMI = 3


# Meta sub-types grouped together with loop markers when a row is sorted
ROW_META_TYPES = frozenset((
	MetaType.MARKER,
	MetaType.DEVICE_SWITCH,
	MetaType.SONG_BEGIN_HOOK,
	MetaType.LOOP_START,
	MetaType.LOOP_END,
	MetaType.LOOP_STACK_BEGIN,
	MetaType.LOOP_STACK_END,
	MetaType.LOOP_STACK_BREAK,
))

ROW_CONTROLLER_TYPES = frozenset((
	EventType.CONTROL_CHANGE,
	EventType.PATCH_CHANGE,
	EventType.PITCH_WHEEL,
	EventType.CHANNEL_AFTERTOUCH,
))

MIDI_CHANNELS = 16
MIDI_PERCUSSION_CHANNEL = 9

CC_SUSTAIN = 64
CC_SOSTENUTO = 66
CC_ALL_SOUND_OFF = 120
CC_ALL_NOTES_OFF = 123

# Controllers reinterpreted as loop points
CC_LOOP_START = 110
CC_LOOP_END = 111
CC_EMIDI_VOLUME = 113
CC_VOLUME = 7

# Standard MIDI File framing
SMF_HEADER_SIZE = 14
SMF_HEADER_MAGIC = b"MThd\x00\x00\x00\x06"
SMF_TRACK_MAGIC = b"MTrk"
SMF_TRACK_HEADER_SIZE = 8
DEFAULT_DIVISION = 192

# Playback
DEFAULT_POST_SONG_WAIT_DELAY = 1.0
ANTI_FREEZE_LIMIT = 10000
DEFAULT_SAMPLE_RATE = 44100
DEFAULT_FRAME_SIZE = 2

# DMX MUS
MUS_HEADER_MAGIC = b"MUS\x1a"
MUS_HEADER_SIZE = 14
MUS_FREQUENCY = 140
MUS_TEMPO = 0x00068A1B       # 60000000 / 140 BPM
MUS_DIVISION = 0x0101        # 257 ticks for 140 Hz scores
MUS_PERCUSSION_CHANNEL = 15
MUS_MAX_CHANNELS = 16

MUS_EVENT_KEY_OFF = 0
MUS_EVENT_KEY_ON = 1
MUS_EVENT_PITCH_WHEEL = 2
MUS_EVENT_CHANNEL_MODE = 3
MUS_EVENT_CONTROLLER_CHANGE = 4
MUS_EVENT_END = 6

MUS_CONTROLLER_MONO = 12

# MUS controller number -> MIDI controller number
MUS_TO_MIDI_CONTROLLERS = (
	0x00,   # program change (handled separately)
	0x00,   # bank select
	0x01,   # modulation
	0x07,   # volume
	0x0A,   # pan
	0x0B,   # expression
	0x5B,   # reverb depth
	0x5D,   # chorus depth
	0x40,   # sustain pedal
	0x43,   # soft pedal
	0x78,   # all sounds off
	0x7B,   # all notes off
	0x7E,   # mono
	0x7F,   # poly
	0x79,   # reset all controllers
)
