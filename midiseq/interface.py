"""The callback table the sequencer dispatches events through.

The sequencer never produces sound itself.  Every event it resolves is handed to
one of these callables, so any synth, MIDI port or test double can sit behind it.
"""

import dataclasses
import typing


NoteOnHook = typing.Callable[[int, int, int], None]
NoteOffHook = typing.Callable[[int, int], None]
NoteOffVelHook = typing.Callable[[int, int, int], None]
NoteAfterTouchHook = typing.Callable[[int, int, int], None]
ChannelAfterTouchHook = typing.Callable[[int, int], None]
ControllerChangeHook = typing.Callable[[int, int, int], None]
PatchChangeHook = typing.Callable[[int, int], None]
PitchBendHook = typing.Callable[[int, int, int], None]
SysExHook = typing.Callable[[bytes], None]
RawEventHook = typing.Callable[[int, int, int, bytes], None]
MetaEventHook = typing.Callable[[int, bytes], None]
DeviceSwitchHook = typing.Callable[[int, bytes], None]
CurrentDeviceHook = typing.Callable[[int], int]
PcmRenderHook = typing.Callable[[memoryview], None]
DebugMessageHook = typing.Callable[[str], None]
SimpleHook = typing.Callable[[], None]


@dataclasses.dataclass
class MidiOutputInterface:

	"""
	Real-time interface between the sequencer and a synthesizer.

	Channel callbacks receive the resolved channel (device offset applied) first.
	``pitch_bend`` receives ``(channel, msb, lsb)``.  ``system_exclusive``
	receives the whole message including its leading status byte.

	Required: ``note_on``, at least one of ``note_off`` / ``note_off_vel``,
	``note_after_touch``, ``channel_after_touch``, ``controller_change``,
	``patch_change``, ``pitch_bend`` and ``system_exclusive``.  Everything else
	is optional and checked for ``None`` before each call.
	"""

	note_on: typing.Optional[NoteOnHook] = None
	note_off: typing.Optional[NoteOffHook] = None
	note_off_vel: typing.Optional[NoteOffVelHook] = None
	note_after_touch: typing.Optional[NoteAfterTouchHook] = None
	channel_after_touch: typing.Optional[ChannelAfterTouchHook] = None
	controller_change: typing.Optional[ControllerChangeHook] = None
	patch_change: typing.Optional[PatchChangeHook] = None
	pitch_bend: typing.Optional[PitchBendHook] = None
	system_exclusive: typing.Optional[SysExHook] = None

	# Optional hooks
	on_event: typing.Optional[RawEventHook] = None
	meta_event: typing.Optional[MetaEventHook] = None
	device_switch: typing.Optional[DeviceSwitchHook] = None
	current_device: typing.Optional[CurrentDeviceHook] = None
	on_pcm_render: typing.Optional[PcmRenderHook] = None
	on_debug_message: typing.Optional[DebugMessageHook] = None
	on_loop_start: typing.Optional[SimpleHook] = None
	on_loop_end: typing.Optional[SimpleHook] = None
	on_song_start: typing.Optional[SimpleHook] = None

	# PCM stream format used by play_stream(); 0 keeps the sequencer defaults
	pcm_sample_rate: int = 0
	pcm_frame_size: int = 0

	def missing_hooks (self) -> typing.List[str]:

		"""Names of required hooks that are not set."""

		missing = [
			name for name in (
				"note_on",
				"note_after_touch",
				"channel_after_touch",
				"controller_change",
				"patch_change",
				"pitch_bend",
				"system_exclusive",
			)
			if getattr(self, name) is None
		]

		if self.note_off is None and self.note_off_vel is None:
			missing.append("note_off or note_off_vel")

		return missing

	def validate (self) -> None:

		"""Raise ``ValueError`` when a required hook is missing."""

		missing = self.missing_hooks()

		if missing:
			raise ValueError(f"MIDI output interface is missing required hooks: {', '.join(missing)}")
