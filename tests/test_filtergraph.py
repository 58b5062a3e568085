"""Tests for the audio filter graph builder (radio/audio/filtergraph.py)."""

import pytest

from radio.audio.filtergraph import (
    Compand,
    FilterGraph,
    Format,
    Gain,
    HighPass,
    Loop,
    Loudnorm,
    LowPass,
    render_chain,
)


class TestOps:
    def test_simple_ops(self):
        assert Gain(0.2).render() == "volume=0.2"
        assert Gain(1.0).render() == "volume=1"
        assert Loop().render() == "aloop=loop=-1:size=2e+09"
        assert HighPass(80).render() == "highpass=f=80"
        assert LowPass(8000).render() == "lowpass=f=8000"
        assert Compand("0.1,0.2 6 -70/-70 300").render() == "mcompand='0.1,0.2 6 -70/-70 300'"

    def test_format(self):
        assert Format(44100, 2).render() == (
            "aresample=44100,aformat=sample_rates=44100:channel_layouts=stereo"
        )
        assert Format(22050, 1).render().endswith("channel_layouts=mono")

    def test_loudnorm_analysis(self):
        op = Loudnorm(-16.0, -1.5, 11.0, print_json=True)
        assert op.render() == "loudnorm=I=-16:TP=-1.5:LRA=11:print_format=json"

    def test_loudnorm_second_pass(self):
        measured = {
            "input_i": "-23.10",
            "input_lra": "4.20",
            "input_tp": "-6.00",
            "input_thresh": "-33.50",
            "target_offset": "0.30",
        }
        rendered = Loudnorm(-18.5, -1.5, 11.0, measured=measured).render()
        assert rendered.startswith("loudnorm=I=-18.5:TP=-1.5:LRA=11:")
        assert "measured_I=-23.10" in rendered
        assert "measured_thresh=-33.50" in rendered
        assert "offset=0.30" in rendered
        assert rendered.endswith("linear=true")

    def test_render_chain(self):
        assert render_chain([HighPass(80), Gain(2)]) == "highpass=f=80,volume=2"


class TestFilterGraph:
    def test_single_input_without_nodes(self):
        graph = FilterGraph()
        stream = graph.input("a.mp3")
        assert graph.compile(stream) == ["-i", "a.mp3", "-map", "0:a"]

    def test_concat_preserves_order(self):
        """Streams are concatenated in list order."""
        graph = FilterGraph()
        a, b, c = (graph.input(name) for name in ("a.mp3", "b.mp3", "c.mp3"))
        out = graph.concat([c, a, b])

        assert graph.render() == "[2:a][0:a][1:a]concat=n=3:v=0:a=1[s1]"
        assert graph.compile(out)[-2:] == ["-map", "[s1]"]

    def test_concat_single_stream_is_identity(self):
        graph = FilterGraph()
        a = graph.input("a.mp3")
        assert graph.concat([a]) == a
        assert graph.nodes == []

    def test_mix_bed_under_content(self):
        graph = FilterGraph()
        voice = graph.input("voice.mp3")
        bed = graph.chain(graph.input("bed.mp3"), Loop(), Gain(0.2))
        out = graph.mix([voice, bed], duration="first")

        assert graph.describe() == [
            ("chain", ("1:a",), "s1"),
            ("mix", ("0:a", "s1"), "s2"),
        ]
        assert graph.render() == (
            "[1:a]aloop=loop=-1:size=2e+09,volume=0.2[s1];"
            "[0:a][s1]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[s2]"
        )
        args = graph.compile(out)
        assert args[:4] == ["-i", "voice.mp3", "-i", "bed.mp3"]
        assert args[4] == "-filter_complex"

    def test_empty_chain_is_passthrough(self):
        graph = FilterGraph()
        graph.chain(graph.input("a.mp3"))
        assert graph.render() == "[0:a]anull[s1]"

    def test_invalid_graphs(self):
        graph = FilterGraph()
        a = graph.input("a.mp3")
        with pytest.raises(ValueError):
            graph.concat([])
        with pytest.raises(ValueError):
            graph.mix([a])
