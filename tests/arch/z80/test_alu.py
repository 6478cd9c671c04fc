# tests/arch/z80/test_alu.py
"""
z80_core_tracer.arch.z80.alu（フラグ計算ヘルパー）の単体テスト。
"""
import pytest

from z80_core_tracer.arch.z80.state import Z80CpuState
from z80_core_tracer.arch.z80.alu import (
    calculate_parity, update_flags_add8, update_flags_sub8, update_flags_add16, rotate_shift8
)

# @intent:test_suite 命令実装から独立して、フラグ計算の境界値を検証します。

class TestAluHelpers:
    @pytest.mark.parametrize("value, expected", [
        (0x00, True), (0x01, False), (0x03, True), (0x80, False), (0xFF, True), (0x1FF, True),
    ])
    def test_calculate_parity(self, value, expected):
        assert calculate_parity(value) is expected

    # @intent:test_case_overflow 符号付きオーバーフローとハーフキャリーの判定を検証します。
    def test_add8_overflow(self):
        state = Z80CpuState()
        update_flags_add8(state, 0x7F, 0x01, 0x80)
        assert state.flag_s and state.flag_pv and state.flag_h
        assert not state.flag_z and not state.flag_c and not state.flag_n

    def test_add8_carry_to_zero(self):
        state = Z80CpuState()
        update_flags_add8(state, 0xFF, 0x01, 0x100)
        assert state.flag_z and state.flag_c and state.flag_h
        assert not state.flag_pv

    def test_sub8_borrow(self):
        state = Z80CpuState()
        update_flags_sub8(state, 0x00, 0x01, -1)
        assert state.flag_s and state.flag_c and state.flag_h and state.flag_n
        assert not state.flag_pv

    def test_add16_keeps_s_z_pv(self):
        state = Z80CpuState()
        state.flag_z = True
        state.flag_pv = True
        update_flags_add16(state, 0x0FFF, 0x0001, 0x1000)
        assert state.flag_h is True
        assert state.flag_c is False
        assert state.flag_z and state.flag_pv

    # @intent:test_case_rotate RL がキャリーを経由して回転することを検証します。
    def test_rotate_through_carry(self):
        state = Z80CpuState()
        state.flag_c = True
        assert rotate_shift8(state, 0x80, 2) == 0x01
        assert state.flag_c is True
        assert rotate_shift8(state, 0x00, 2) == 0x01
        assert state.flag_c is False
