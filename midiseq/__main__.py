import argparse
import asyncio
import logging
import os
import typing

import yaml

import midiseq.midi_utils
import midiseq.mido_output
import midiseq.player
import midiseq.sequencer


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def load_config (config_path: str = 'config.yaml') -> dict:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		return yaml.safe_load(f) or {}


def parse_args (argv: typing.Optional[typing.List[str]] = None) -> argparse.Namespace:

	parser = argparse.ArgumentParser(prog="midiseq", description="Play a MIDI or MUS file through a MIDI output port.")
	parser.add_argument("file", help="Standard MIDI File (.mid) or DMX MUS lump (.mus)")
	parser.add_argument("--config", default="config.yaml", help="YAML configuration file")
	parser.add_argument("--device", default=None, help="MIDI output port name")
	parser.add_argument("--loop", action="store_true", default=None, help="Loop the song")

	return parser.parse_args(argv)


def main (argv: typing.Optional[typing.List[str]] = None) -> int:

	"""
	Main entry point for the midiseq player.
	"""

	args = parse_args(argv)
	config = load_config(args.config)

	playback = config.get('playback', {})
	device_name = args.device or config.get('midi', {}).get('device_name')
	loop = args.loop if args.loop is not None else playback.get('loop', False)

	with open(args.file, 'rb') as f:
		data = f.read()

	_, port = midiseq.midi_utils.select_output_device(device_name)

	if port is None:
		return 1

	output = midiseq.mido_output.MidoOutput(port)
	sequencer = midiseq.sequencer.MidiSequencer(output.interface())

	sequencer.set_loop_enabled(loop)
	sequencer.set_loops_count(playback.get('loops_count', -1))
	sequencer.set_tempo(playback.get('tempo', 1.0))

	if not sequencer.load_midi(data):
		logger.error(f"Can't play {args.file}: {sequencer.get_error_string().strip()}")
		output.close()
		return 1

	if sequencer.get_music_title():
		logger.info(f"Title: {sequencer.get_music_title()}")

	if sequencer.get_music_copyright():
		logger.info(f"Copyright: {sequencer.get_music_copyright()}")

	logger.info(f"Length: {sequencer.time_length():.1f}s")

	player = midiseq.player.Player(sequencer, output=output, granularity=playback.get('granularity', 0.001))

	try:
		asyncio.run(player.play())
	except KeyboardInterrupt:
		logger.info("Stopping...")
		output.panic()
	finally:
		output.close()

	return 0


if __name__ == "__main__":
	raise SystemExit(main())
