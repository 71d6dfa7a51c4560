"""Tests for the command builders."""

import pytest

from pyblade import commands
from pyblade.exceptions import InvalidCommand


class TestSystemCommands:

    def test_sys_query(self):
        assert commands.sys_query().to_frame() == "<SYS?>"

    def test_set_ifid(self):
        assert commands.sys_set_ifid().to_frame() == "<SYS|IFID:Companion>"
        assert commands.sys_set_ifid("Studio:A").to_frame() == "<SYS|IFID:Studio/:A>"

    def test_set_subrate(self):
        assert commands.sys_set_subrate(10, 100).to_frame() == "<SYS|SUBRATE:10.100>"


class TestMixerCommands:

    def test_input_on_off(self):
        assert commands.umix_input_on(1, 2, True).to_frame() == "<UMIX:1.2|ON:1>"
        assert commands.umix_input_on(1, 2, False).to_frame() == "<UMIX:1.2|ON:0>"

    def test_input_fader(self):
        assert commands.umix_input_fader(1, 2, -6.5).to_frame() == "<UMIX:1.2|FDRA:-6.5>"
        assert commands.umix_input_fader(2, 8, 0, bus="B").to_frame() == "<UMIX:2.8|FDRB:0>"

    def test_input_increment(self):
        assert commands.umix_input_increment(1, 1, -3).to_frame() == "<UMIX:1.1|INCA:-3>"
        assert commands.umix_input_increment(1, 1, 2, bus="B").to_frame() == "<UMIX:1.1|INCB:2>"

    def test_input_duck(self):
        assert commands.umix_input_duck(1, 3).to_frame() == "<UMIX:1.3|DUCKA:1>"
        assert commands.umix_input_duck(1, 3, False, output="DUCKB").to_frame() == "<UMIX:1.3|DUCKB:0>"

    def test_input_balance(self):
        assert commands.umix_input_balance(1, 4, -25, output="BALB").to_frame() == "<UMIX:1.4|BALB:-25>"

    def test_input_ramp(self):
        assert commands.umix_input_ramp(1, 5, "DRAMPB", 3).to_frame() == "<UMIX:1.5|DRAMPB:3>"

    def test_output_bus(self):
        assert commands.umix_output_on(1, "A").to_frame() == "<UMIX:1.A|ON:1>"
        assert commands.umix_output_master_fader(2, "B", -10).to_frame() == "<UMIX:2.B|MFDR:-10>"
        assert commands.umix_output_master_increment(1, "A", 1.5).to_frame() == "<UMIX:1.A|MINC:1.5>"

    def test_subscribe(self):
        assert commands.umix_subscribe("1.2", "ON").to_frame() == "<UMIXSUB:1.2|ON:1>"
        assert commands.umix_subscribe("1.2", "FDRA", enabled=False).to_frame() == "<UMIXSUB:1.2|FDRA:0>"

    @pytest.mark.parametrize(
        "build",
        [
            lambda: commands.umix_input_fader(1, 1, 0, bus="C"),
            lambda: commands.umix_input_duck(1, 1, output="DUCKC"),
            lambda: commands.umix_input_balance(1, 1, 101),
            lambda: commands.umix_input_balance(1, 1, "50"),
            lambda: commands.umix_input_balance(1, 1, 0, output="BAL"),
            lambda: commands.umix_input_ramp(1, 1, "UP", 1),
            lambda: commands.umix_input_ramp(1, 1, "URAMPA", 4),
            lambda: commands.umix_output_on(1, "C"),
        ],
    )
    def test_invalid_choices(self, build):
        with pytest.raises(InvalidCommand):
            build()


class TestRoutingCommands:

    def test_dst_set_source(self):
        assert commands.dst_set_source("00400001", "00800001").to_frame() == "<DST:00400001|SRC:00800001>"

    def test_dst_disconnect(self):
        assert commands.dst_disconnect("00400001").to_frame() == "<DST:00400001|SRC:0000FFFF>"

    def test_dst_lock(self):
        assert commands.dst_lock("00400001").to_frame() == "<DST:00400001|LOCKED:1>"
        assert commands.dst_lock("00400001", False).to_frame() == "<DST:00400001|LOCKED:0>"

    def test_salvo_fire(self):
        assert commands.salvo_fire(12).to_frame() == "<SALVO:12|FIRE:1>"

    @pytest.mark.parametrize("salvo", [0, 257, "3", None, True])
    def test_salvo_out_of_range(self, salvo: int):
        with pytest.raises(InvalidCommand):
            commands.salvo_fire(salvo)


class TestIoCommands:

    def test_slio(self):
        assert commands.slio_set("3").to_frame() == "<SLIO:3|LVL:1>"

    def test_lio_card_circuit(self):
        assert commands.lio_set("49.0", False).to_frame() == "<LIO:49.0|LVL:0>"

    def test_mic_phantom_power(self):
        assert commands.mic_phantom_power("06000C00").to_frame() == "<MIC:06000C00|PPWR:1>"
        assert commands.mic_phantom_power("24.0.6.0", False).to_frame() == "<MIC:24.0.6.0|PPWR:0>"
