"""Radio Program Pipeline - Audio filter graph builder.

Orchestration code describes audio processing as typed operations on
streams; nothing here knows about ffmpeg until compile time. A graph is an
ordered list of nodes, each consuming one or more streams and producing
one. FilterGraph.compile() renders the graph as ffmpeg arguments
(-i inputs, -filter_complex, -map).

Example (content with a looped, attenuated bed underneath):

    graph = FilterGraph()
    voice = graph.chain(graph.input("voice.mp3"), Format(44100, 2))
    bed = graph.chain(graph.input("bed.mp3"), Format(44100, 2), Loop(), Gain(0.2))
    out = graph.mix([voice, bed], duration="first")
    args = graph.compile(out)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


def _num(value: float) -> str:
    """Render a number without a trailing .0 for integral values."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


# --- Single-stream operations ---


@dataclass(frozen=True)
class Op:
    """A single-input, single-output audio operation."""

    def render(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Gain(Op):
    """Linear volume factor (1.0 = unchanged)."""

    volume: float

    def render(self) -> str:
        return f"volume={_num(self.volume)}"


@dataclass(frozen=True)
class Loop(Op):
    """Repeat the stream indefinitely; a downstream mix bounds it."""

    def render(self) -> str:
        return "aloop=loop=-1:size=2e+09"


@dataclass(frozen=True)
class Format(Op):
    """Conform sample rate and channel count."""

    sample_rate: int
    channels: int

    def render(self) -> str:
        layout = "stereo" if self.channels == 2 else "mono"
        return f"aresample={self.sample_rate},aformat=sample_rates={self.sample_rate}:channel_layouts={layout}"


@dataclass(frozen=True)
class HighPass(Op):
    frequency: float

    def render(self) -> str:
        return f"highpass=f={_num(self.frequency)}"


@dataclass(frozen=True)
class LowPass(Op):
    frequency: float

    def render(self) -> str:
        return f"lowpass=f={_num(self.frequency)}"


@dataclass(frozen=True)
class Compand(Op):
    """Multi-band compressor; bands is the mcompand argument string."""

    bands: str

    def render(self) -> str:
        return f"mcompand='{self.bands}'"


@dataclass(frozen=True)
class Loudnorm(Op):
    """EBU R128 loudness normalization.

    With measured=None this is an analysis (or single-pass) filter; with the
    first-pass measurements it runs as the linear second pass.
    """

    target_lufs: float
    true_peak: float
    loudness_range: float
    measured: dict | None = None
    print_json: bool = False

    def render(self) -> str:
        parts = [
            f"I={_num(self.target_lufs)}",
            f"TP={_num(self.true_peak)}",
            f"LRA={_num(self.loudness_range)}",
        ]
        if self.measured is not None:
            parts += [
                f"measured_I={self.measured['input_i']}",
                f"measured_LRA={self.measured['input_lra']}",
                f"measured_TP={self.measured['input_tp']}",
                f"measured_thresh={self.measured['input_thresh']}",
                f"offset={self.measured['target_offset']}",
                "linear=true",
            ]
        if self.print_json:
            parts.append("print_format=json")
        return "loudnorm=" + ":".join(parts)


def render_chain(ops: list[Op] | tuple[Op, ...]) -> str:
    """Render single-stream ops as an -af chain."""
    return ",".join(op.render() for op in ops)


# --- Graph ---


@dataclass(frozen=True)
class Stream:
    """Handle to a stream inside a FilterGraph."""

    label: str


@dataclass(frozen=True)
class Node:
    """One step of the graph: kind in {chain, concat, mix}."""

    kind: str
    inputs: tuple[Stream, ...]
    output: Stream
    ops: tuple[Op, ...] = ()
    duration: str | None = None

    def render(self) -> str:
        sources = "".join(f"[{s.label}]" for s in self.inputs)
        if self.kind == "chain":
            body = render_chain(self.ops) if self.ops else "anull"
        elif self.kind == "concat":
            body = f"concat=n={len(self.inputs)}:v=0:a=1"
        elif self.kind == "mix":
            body = (
                f"amix=inputs={len(self.inputs)}:duration={self.duration}"
                ":dropout_transition=0:normalize=0"
            )
        else:
            raise ValueError(f"Unknown node kind: {self.kind}")
        return f"{sources}{body}[{self.output.label}]"


class FilterGraph:
    """Ordered, append-only audio graph."""

    def __init__(self) -> None:
        self.inputs: list[Path] = []
        self.nodes: list[Node] = []
        self._counter = 0

    def _new_stream(self) -> Stream:
        self._counter += 1
        return Stream(f"s{self._counter}")

    def input(self, path: str | Path) -> Stream:
        """Register an input file and return its stream."""
        self.inputs.append(Path(path))
        return Stream(f"{len(self.inputs) - 1}:a")

    def chain(self, stream: Stream, *ops: Op) -> Stream:
        out = self._new_stream()
        self.nodes.append(Node("chain", (stream,), out, ops=tuple(ops)))
        return out

    def concat(self, streams: list[Stream]) -> Stream:
        """Play streams back to back, in list order."""
        if not streams:
            raise ValueError("concat needs at least one stream")
        if len(streams) == 1:
            return streams[0]
        out = self._new_stream()
        self.nodes.append(Node("concat", tuple(streams), out))
        return out

    def mix(self, streams: list[Stream], duration: str = "first") -> Stream:
        """Sum streams without level normalization.

        duration="first" bounds the mix to the first stream's length.
        """
        if len(streams) < 2:
            raise ValueError("mix needs at least two streams")
        out = self._new_stream()
        self.nodes.append(Node("mix", tuple(streams), out, duration=duration))
        return out

    def describe(self) -> list[tuple[str, tuple[str, ...], str]]:
        """Engine-agnostic view: (kind, input labels, output label) per node."""
        return [
            (node.kind, tuple(s.label for s in node.inputs), node.output.label)
            for node in self.nodes
        ]

    def render(self) -> str:
        return ";".join(node.render() for node in self.nodes)

    def compile(self, output: Stream) -> list[str]:
        """Render ffmpeg arguments: inputs, -filter_complex and -map."""
        args: list[str] = []
        for path in self.inputs:
            args += ["-i", str(path)]
        if self.nodes:
            args += ["-filter_complex", self.render()]
            args += ["-map", f"[{output.label}]"]
        else:
            args += ["-map", output.label]
        return args
