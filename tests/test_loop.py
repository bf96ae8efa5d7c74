import midiseq.loop


def test_reset_refills_loop_counter () -> None:

	"""reset() clears the caught flags and restores the remaining loop count."""

	state = midiseq.loop.LoopState()
	state.loops_count = 3
	state.loops_left = 0
	state.caught_start = True
	state.caught_stack_end = True
	state.skip_stack_start = True

	state.reset()

	assert state.loops_left == 3
	assert not state.caught_start
	assert not state.caught_stack_end
	assert not state.skip_stack_start


def test_full_reset () -> None:

	"""full_reset() also forgets the stack and the loop validity."""

	state = midiseq.loop.LoopState()
	state.loops_count = 2
	state.invalid_loop = True
	state.temporary_broken = True
	state.stack.append(midiseq.loop.LoopStackEntry(loops=2))
	state.stack_level = 0

	state.full_reset()

	assert state.loops_count == -1
	assert state.loops_left == -1
	assert not state.invalid_loop
	assert not state.temporary_broken
	assert state.stack == []
	assert state.stack_level == -1


def test_stack_up_and_down () -> None:

	"""The level moves by the given count."""

	state = midiseq.loop.LoopState()

	state.stack_up()
	assert state.stack_level == 0

	state.stack_up(2)
	state.stack_down()
	assert state.stack_level == 1


def test_is_stack_end () -> None:

	"""A caught stack end counts only while the frame has passes left."""

	state = midiseq.loop.LoopState()
	state.stack.append(midiseq.loop.LoopStackEntry(loops=1))
	state.stack_level = 0

	assert not state.is_stack_end()

	state.caught_stack_end = True
	assert state.is_stack_end()

	state.stack[0].loops = 0
	assert not state.is_stack_end()

	state.stack[0].infinity = True
	assert state.is_stack_end()


def test_is_stack_end_outside_stack () -> None:

	"""No frame at the current level means no stack end."""

	state = midiseq.loop.LoopState()
	state.caught_stack_end = True

	assert not state.is_stack_end()


def test_get_current_stack () -> None:

	"""The frame at the current level is returned."""

	state = midiseq.loop.LoopState()
	outer = midiseq.loop.LoopStackEntry(loops=2)
	inner = midiseq.loop.LoopStackEntry(loops=4)
	state.stack.extend([outer, inner])
	state.stack_level = 1

	assert state.get_current_stack() is inner


def test_get_current_stack_out_of_range () -> None:

	"""Out of range levels fall back to the bottom frame, creating it if needed."""

	state = midiseq.loop.LoopState()

	entry = state.get_current_stack()

	assert state.stack == [entry]
	assert entry.loops == 0

	state.stack_level = 5
	assert state.get_current_stack() is entry
