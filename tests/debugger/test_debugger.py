# tests/debugger/test_debugger.py
"""
z80_core_tracer.debugger.debuggerモジュールの単体テスト。
Debuggerの実行制御、ブレークポイント管理、実行履歴とステップバックを検証します。
"""
import logging

import pytest
from unittest.mock import patch

from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.arch.z80.cpu import Z80Cpu
from z80_core_tracer.debugger.debugger import Debugger, StopReason, RunResult

# @intent:test_suite デバッガのブレークポイントと実行制御機能の検証。

# NOP x4, LD A,$01, LD ($2000),A, HALT
PROGRAM = [0x00, 0x00, 0x00, 0x00, 0x3E, 0x01, 0x32, 0x00, 0x20, 0x76]


class TestDebugger:
    """
    Debuggerの単体テスト。
    """
    @pytest.fixture
    def setup_debugger(self):
        bus = MemoryBus()
        cpu = Z80Cpu(bus)
        cpu.reset()
        bus.load_program(PROGRAM, 0x0000)
        debugger = Debugger(cpu)
        return debugger, cpu, bus

    # @intent:test_case_breakpoints ブレークポイントの追加、削除、反転、昇順一覧を検証します。
    def test_breakpoint_management(self, setup_debugger):
        debugger, _, _ = setup_debugger
        debugger.set_breakpoint(0x2000)
        debugger.set_breakpoint(0x1000)
        debugger.set_breakpoint(0x11000) # 0x1000 にマスクされる
        assert debugger.get_breakpoints() == [0x1000, 0x2000]

        assert debugger.toggle_breakpoint(0x1000) is False
        assert debugger.toggle_breakpoint(0x3000) is True
        assert debugger.get_breakpoints() == [0x2000, 0x3000]
        assert debugger.has_breakpoint(0x3000)

        debugger.clear_breakpoint(0x2000)
        debugger.clear_breakpoint(0x4000) # 未設定でもエラーにならない
        assert debugger.get_breakpoints() == [0x3000]

        debugger.clear_all_breakpoints()
        assert debugger.get_breakpoints() == []

    # @intent:test_case_run_halt HALT命令で実行が停止することを検証します。
    def test_run_until_halt(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        result = debugger.run()
        assert result == RunResult(StopReason.HALTED, 0x000A, 7)
        assert bus.peek(0x2000) == 0x01
        assert debugger.running is False

    def test_run_when_already_halted(self, setup_debugger):
        debugger, _, _ = setup_debugger
        debugger.run()
        result = debugger.run()
        assert result.reason == StopReason.HALTED
        assert result.steps == 0

    # @intent:test_case_breakpoint_hit ブレークポイントで停止し、ログに記録され、再開できることを検証します。
    def test_breakpoint_hit_and_resume(self, setup_debugger, caplog):
        debugger, cpu, _ = setup_debugger
        debugger.set_breakpoint(0x0004)
        with caplog.at_level(logging.INFO, logger="z80_core_tracer.debugger.debugger"):
            result = debugger.run()
        assert result == RunResult(StopReason.BREAKPOINT, 0x0004, 4)
        assert cpu.get_state().a == 0x00 # ブレークポイント上の命令は未実行
        assert "Breakpoint hit" in caplog.text

        result = debugger.run()
        assert result.reason == StopReason.HALTED
        assert result.steps == 3

    # @intent:test_case_first_step 開始位置のブレークポイントは最初の1命令では判定されないことを検証します。
    def test_breakpoint_at_start_is_skipped(self, setup_debugger):
        debugger, _, _ = setup_debugger
        debugger.set_breakpoint(0x0000)
        result = debugger.run()
        assert result.reason == StopReason.HALTED

    # @intent:test_case_step_limit max_steps による停止を検証します。
    def test_step_limit(self, setup_debugger):
        debugger, cpu, _ = setup_debugger
        result = debugger.run(max_steps=2)
        assert result == RunResult(StopReason.STEP_LIMIT, 0x0002, 2)
        assert debugger.run(max_steps=0).steps == 0
        with pytest.raises(ValueError):
            debugger.run(max_steps=-1)

    # @intent:test_case_stop 実行中の stop() 要求により次の命令の前で停止することを検証します。
    def test_stop_during_run(self, setup_debugger):
        debugger, _, _ = setup_debugger
        original_step = debugger.step_instruction

        def step_then_stop():
            snapshot = original_step()
            if snapshot.metadata.instruction_count == 3:
                debugger.stop()
            return snapshot

        with patch.object(debugger, "step_instruction", side_effect=step_then_stop):
            result = debugger.run()
        assert result == RunResult(StopReason.STOPPED, 0x0003, 3)

    # @intent:test_case_stop run() の前に要求された stop() で命令を実行せずに停止し、要求は1回の run() で消費されることを検証します。
    def test_stop_before_run(self, setup_debugger):
        debugger, cpu, _ = setup_debugger
        debugger.stop()
        assert debugger.run() == RunResult(StopReason.STOPPED, 0x0000, 0)
        assert cpu.instruction_count == 0

        assert debugger.run() == RunResult(StopReason.HALTED, 0x000A, 7)

    # @intent:test_case_stop 停止要求が消費されずに run() が終わった場合も、次の run() には持ち越さないことを検証します。
    def test_stop_request_cleared_when_run_returns(self, setup_debugger):
        debugger, _, _ = setup_debugger
        original_step = debugger.step_instruction

        def step_then_stop():
            snapshot = original_step()
            if snapshot.operation.mnemonic == "HALT":
                debugger.stop()
            return snapshot

        with patch.object(debugger, "step_instruction", side_effect=step_then_stop):
            assert debugger.run().reason == StopReason.HALTED
        # HALT 状態を解除して再実行する
        debugger.step_back()
        result = debugger.run()
        assert result.reason == StopReason.HALTED
        assert result.steps == 1

    # @intent:test_case_step step_instruction が履歴と直前のスナップショットを更新することを検証します。
    def test_step_instruction_records_history(self, setup_debugger):
        debugger, _, _ = setup_debugger
        snapshot = debugger.step_instruction()
        assert snapshot.metadata.address == 0x0000
        assert debugger.get_last_snapshot() is snapshot
        assert debugger.get_history() == [snapshot]

    # @intent:test_case_step_back ステップバックでメモリ書き込み、レジスタ、カウンタが復元されることを検証します。
    def test_step_back_restores_memory_and_counters(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        bus.poke(0x2000, 0x5A)
        debugger.run()
        assert bus.peek(0x2000) == 0x01

        debugger.step_back() # HALT
        assert cpu.halted is False
        assert cpu.pc == 0x0009

        undone = debugger.step_back() # LD ($2000),A
        assert undone.operation.text == "LD ($2000),A"
        assert bus.peek(0x2000) == 0x5A
        assert cpu.pc == 0x0006
        assert cpu.instruction_count == 5
        assert cpu.cycle_count == 4 * 4 + 7
        assert debugger.get_last_snapshot().metadata.address == 0x0004

    def test_step_back_without_history(self, setup_debugger):
        debugger, _, _ = setup_debugger
        assert debugger.step_back() is None

    # @intent:test_case_history_bound 履歴が上限件数を超えると古いものから破棄されることを検証します。
    def test_history_is_bounded(self):
        bus = MemoryBus()
        cpu = Z80Cpu(bus)
        cpu.reset()
        debugger = Debugger(cpu, history_size=3)
        debugger.run(max_steps=10)
        history = debugger.get_history()
        assert debugger.history_size == 3
        assert [s.metadata.address for s in history] == [0x0007, 0x0008, 0x0009]

    def test_history_disabled(self):
        bus = MemoryBus()
        cpu = Z80Cpu(bus)
        cpu.reset()
        debugger = Debugger(cpu, history_size=0)
        debugger.run(max_steps=5)
        assert debugger.get_history() == []
        assert debugger.get_last_snapshot() is not None
        assert debugger.step_back() is None

    def test_negative_history_size(self):
        with pytest.raises(ValueError):
            Debugger(Z80Cpu(MemoryBus()), history_size=-1)
