#!/usr/bin/env python3

from stillcastlib.core import utils
from stillcastlib.core.inputs import InputSlots
from stillcastlib.core.inputs import MUSIC_SLOT

#============================================

MIX_LABEL = 'aout'
MUSIC_LABEL = 'bgmusic'
FINAL_LABEL = 'final'
DROPOUT_TRANSITION = 2

#============================================

class CompiledGraph():
	def __init__(self, text: str, output_label: str, slots: InputSlots):
		self.text = text
		self.output_label = output_label
		self.slots = slots

	#============================
	def map_target(self) -> str:
		return f"[{self.output_label}]"

#============================================

def clip_chain(index: int, slot: int, clip_with_gain) -> str:
	"""
	Trim one clip from its source, restart its timestamps, apply the
	track gain and delay it to its timeline position.
	"""
	clip = clip_with_gain.clip
	delay_ms = int(clip.start_time * 1000)
	trim_start = utils.format_number(clip.trim_in)
	trim_end = utils.format_number(clip.trim_in + clip.duration)
	gain = utils.format_number(clip_with_gain.gain)
	chain = f"[{slot}:a]"
	chain += f"atrim=start={trim_start}:end={trim_end},"
	chain += "asetpts=PTS-STARTPTS,"
	chain += f"volume={gain},"
	chain += f"adelay={delay_ms}|{delay_ms}"
	chain += f"[a{index}]"
	return chain

#============================================

def mix_chain(count: int, master_gain: float) -> str:
	labels = "".join(f"[a{index}]" for index in range(count))
	chain = labels
	chain += f"amix=inputs={count}:duration=longest,"
	chain += f"volume={utils.format_number(master_gain)}"
	chain += f"[{MIX_LABEL}]"
	return chain

#============================================

def music_chains(music_gain: float) -> list:
	loop_chain = f"[{MUSIC_SLOT}:a]"
	loop_chain += "aloop=loop=-1:size=2e+09,"
	loop_chain += f"volume={utils.format_number(music_gain)}"
	loop_chain += f"[{MUSIC_LABEL}]"
	final_chain = f"[{MIX_LABEL}][{MUSIC_LABEL}]"
	final_chain += "amix=inputs=2:duration=first:"
	final_chain += f"dropout_transition={DROPOUT_TRANSITION}"
	final_chain += f"[{FINAL_LABEL}]"
	return [loop_chain, final_chain]

#============================================

def compile_graph(clips: list, slots: InputSlots, master_gain: float,
	music_gain: float = None) -> CompiledGraph:
	"""
	Build the audio filter graph for a flattened clip list.

	Args:
		clips: ClipWithGain list in flattening order.
		slots: input slot assignment from resolve_inputs.
		master_gain: linear gain applied after the clip mix.
		music_gain: linear background music gain, used only when the
			slots reserve a music input.

	Returns:
		CompiledGraph with the graph text and its terminal label. An empty
		clip list gives empty text.
	"""
	if len(clips) == 0:
		return CompiledGraph("", MIX_LABEL, slots)
	chains = []
	for index, clip_with_gain in enumerate(clips):
		slot = slots.slot_for(clip_with_gain.clip.source_file)
		chains.append(clip_chain(index, slot, clip_with_gain))
	chains.append(mix_chain(len(clips), master_gain))
	output_label = MIX_LABEL
	if slots.has_music:
		if music_gain is None:
			music_gain = 1.0
		chains.extend(music_chains(music_gain))
		output_label = FINAL_LABEL
	return CompiledGraph(";".join(chains), output_label, slots)
