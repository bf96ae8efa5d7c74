import logging
import typing

import mido

logger = logging.getLogger(__name__)

def select_output_device(device_name: typing.Optional[str] = None, interactive: bool = True) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Find and open the MIDI output port music is played through.

    With `device_name`, only that port is accepted.
    Without it:
    - a single available port is used as is,
    - several ports are listed on the console for the user to pick from
      (or the first one is taken when `interactive` is False),
    - no ports at all is an error.

    Returns:
        (port_name, port) on success, (None, None) otherwise.
    """
    try:
        outputs = mido.get_output_names()
        logger.info(f"MIDI output ports: {outputs}")

        if not outputs:
            logger.error("No MIDI output ports found.")
            return None, None

        if device_name is not None:
            if device_name not in outputs:
                logger.error(f"MIDI output port '{device_name}' not found. Available ports: {outputs}")
                return None, None
            return device_name, _open(device_name)

        if len(outputs) == 1 or not interactive:
            logger.info(f"Using MIDI output port '{outputs[0]}'")
            return outputs[0], _open(outputs[0])

        selected_name = outputs[_prompt_for_port(outputs)]

        print(f"\nTip: skip this prompt next time with --device \"{selected_name}\"\n")

        return selected_name, _open(selected_name)

    except Exception as e:
        logger.error(f"Failed to open MIDI output: {e}")
        return None, None


def _open(name: str) -> typing.Any:
    port = mido.open_output(name)
    logger.info(f"Opened MIDI output: {name}")
    return port


def _prompt_for_port(outputs: typing.List[str]) -> int:
    """Ask on the console which port to use; returns its index."""
    print("\nMIDI output ports:\n")
    for i, name in enumerate(outputs, 1):
        print(f"  {i}. {name}")
    print()

    while True:
        try:
            choice = int(input(f"Play through (1-{len(outputs)}): "))
            if 1 <= choice <= len(outputs):
                return choice - 1
        except EOFError:
            return 0
        except ValueError:
            pass
        print(f"Enter a number between 1 and {len(outputs)}.")
