"""
midiseq - a MIDI file sequencer for Python.

midiseq reads Standard MIDI Files and the DMX "MUS" scores of Doom-era
games and plays them through any synthesizer you can reach from Python: a
hardware port via mido, a software synth, or your own callbacks. It
produces events, not audio.

What it does:

- **Two formats, one engine.** MUS scores are converted to an equivalent
  SMF on load, so both formats share the same timeline and playback code.
- **Exact timing.** Tempo is kept as an exact fraction of seconds per tick
  and every tempo change is honored between rows, so long songs never drift.
- **Game-style loops.** Loop points from ``loopStart``/``loopEnd`` markers,
  nested ``loopStart=N``/``loopEnd=`` markers, HMI and RPG Maker loop
  controllers (CC110/CC111) and EMIDI files are all recognized.
- **Three ways to drive it.** ``tick()`` from a timer, ``play_stream()``
  from an audio callback (events land on the right sample), or ``seek()``
  to any point with controllers and patches restored along the way.
- **Robust against broken files.** Truncated data, bad loop markers and
  zero-delay event storms are reported or contained, never fatal.

Minimal example:

    ```python
    import asyncio
    import mido
    import midiseq

    output = midiseq.MidoOutput(mido.open_output())
    sequencer = midiseq.MidiSequencer(output.interface())

    with open("song.mid", "rb") as f:
        sequencer.load_midi(f.read())

    asyncio.run(midiseq.Player(sequencer, output=output).play())
    ```

Or from the command line: ``python -m midiseq song.mid --loop``.

Package-level exports: ``MidiSequencer``, ``MidiOutputInterface``,
``MidoOutput``, ``Player``, ``convert_mus_to_midi``.
"""

import midiseq.interface
import midiseq.mido_output
import midiseq.mus
import midiseq.player
import midiseq.sequencer


MidiSequencer = midiseq.sequencer.MidiSequencer
MidiOutputInterface = midiseq.interface.MidiOutputInterface
MidoOutput = midiseq.mido_output.MidoOutput
Player = midiseq.player.Player
convert_mus_to_midi = midiseq.mus.convert_mus_to_midi
