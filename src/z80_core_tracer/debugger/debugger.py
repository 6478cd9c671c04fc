# z80_core_tracer/debugger/debugger.py
"""
デバッガモジュール。

コアエンジンの実行を制御し、ユーザーが指定したアドレス（ブレークポイント）で
実行を中断させる責務を負います。実行履歴を保持し、ステップバックを提供します。
"""
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, Optional, Set

from z80_core_tracer.core.cpu import AbstractCpu
from z80_core_tracer.core.snapshot import Snapshot, BusAccessType

logger = logging.getLogger(__name__)

# @intent:constant 実行履歴の既定の保持件数。
DEFAULT_HISTORY_SIZE = 100


# @intent:responsibility run() が停止した理由を定義します。
class StopReason(Enum):
    BREAKPOINT = "breakpoint"   # PCがブレークポイントに到達した（その命令は未実行）
    HALTED = "halted"           # HALT命令によりCPUが停止した
    STEP_LIMIT = "step_limit"   # max_steps に達した
    STOPPED = "stopped"         # stop() による外部からの中断


# @intent:responsibility run() の結果（停止理由、停止時のPC、実行した命令数）を保持します。
@dataclass(frozen=True)
class RunResult:
    reason: StopReason
    address: int
    steps: int


# @intent:responsibility コアエンジンの実行制御とブレークポイント管理を行います。
class Debugger:
    """
    CPUの実行を制御し、ブレークポイントの管理を行うクラス。
    ブレークポイントは64K空間でマスクされたアドレスの集合です。
    """
    def __init__(self, cpu: AbstractCpu, history_size: int = DEFAULT_HISTORY_SIZE):
        if history_size < 0:
            raise ValueError("history_size must be non-negative")
        self._cpu = cpu
        self._breakpoints: Set[int] = set()
        self._stop_requested: bool = False
        self._running: bool = False
        self._last_snapshot: Optional[Snapshot] = None
        # @intent:responsibility 実行履歴を保持し、ステップバックをサポートします。古いものから破棄されます。
        self._history: Deque[Snapshot] = deque(maxlen=history_size)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def history_size(self) -> int:
        return self._history.maxlen or 0

    # --- Breakpoints ---

    def set_breakpoint(self, address: int) -> None:
        self._breakpoints.add(address & 0xFFFF)

    def clear_breakpoint(self, address: int) -> None:
        self._breakpoints.discard(address & 0xFFFF)

    # @intent:responsibility ブレークポイントの有無を反転し、反転後に設定されているかどうかを返します。
    def toggle_breakpoint(self, address: int) -> bool:
        address &= 0xFFFF
        if address in self._breakpoints:
            self._breakpoints.remove(address)
            return False
        self._breakpoints.add(address)
        return True

    def clear_all_breakpoints(self) -> None:
        self._breakpoints.clear()

    def has_breakpoint(self, address: int) -> bool:
        return (address & 0xFFFF) in self._breakpoints

    def get_breakpoints(self) -> List[int]:
        """
        現在設定されている全てのブレークポイントを昇順で返します。
        """
        return sorted(self._breakpoints)

    # --- History ---

    def get_history(self) -> List[Snapshot]:
        """
        現在の実行履歴を返します（古い順）。
        """
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
        self._last_snapshot = None

    def get_last_snapshot(self) -> Optional[Snapshot]:
        return self._last_snapshot

    # --- Execution ---

    # @intent:responsibility CPUを1命令分実行します。ブレークポイントは参照しません。
    # @intent:post-condition HALT状態の場合は None を返し、履歴は変化しません。
    def step_instruction(self) -> Optional[Snapshot]:
        """
        CPUを1命令分実行し、その結果のSnapshotを返します。
        """
        snapshot = self._cpu.step()
        if snapshot is None:
            return None
        self._last_snapshot = snapshot
        if self._history.maxlen:
            self._history.append(snapshot)
        return snapshot

    # @intent:responsibility 直前の1命令を取り消し、CPUとメモリの状態を実行前に戻します。
    def step_back(self) -> Optional[Snapshot]:
        """
        実行履歴を1つ戻り、CPUとメモリの状態を復元します。
        取り消したSnapshotを返します。履歴が空の場合は None を返します。
        """
        if not self._history:
            return None

        # 1. 履歴から最新のスナップショットを取り出し、削除する
        snapshot_to_revert = self._history.pop()

        # 2. メモリ書き込みの取り消し (Undo)
        # バスアクティビティを逆順にスキャンし、書き込み操作があれば元に戻す
        bus = self._cpu.bus
        for access in reversed(snapshot_to_revert.bus_activity):
            if access.access_type == BusAccessType.WRITE and access.previous_data is not None:
                bus.poke(access.address, access.previous_data)

        # 3. CPU状態の復元
        if snapshot_to_revert.previous_state is not None:
            self._cpu.restore_state(snapshot_to_revert.previous_state)
        self._cpu.rewind_counters(snapshot_to_revert)
        self._last_snapshot = self._history[-1] if self._history else None
        return snapshot_to_revert

    # @intent:responsibility HALT、ブレークポイント、ステップ上限、または stop() まで命令を実行します。
    # @intent:rationale ブレークポイントは各命令の実行前に判定しますが、最初の1命令は対象外です。
    #                  これにより、ブレークポイント上で停止した状態から run() を再開できます。
    def run(self, max_steps: Optional[int] = None) -> RunResult:
        """
        CPUの実行を継続し、停止理由を RunResult として返します。
        """
        if max_steps is not None and max_steps < 0:
            raise ValueError("max_steps must be non-negative")

        self._running = True
        steps = 0
        try:
            while True:
                pc = self._cpu.pc
                if self._cpu.halted:
                    return self._finish(StopReason.HALTED, pc, steps)
                if steps > 0 and pc in self._breakpoints:
                    logger.info("Breakpoint hit at PC: %#06x", pc)
                    return self._finish(StopReason.BREAKPOINT, pc, steps)
                if max_steps is not None and steps >= max_steps:
                    return self._finish(StopReason.STEP_LIMIT, pc, steps)
                if self._stop_requested:
                    return self._finish(StopReason.STOPPED, pc, steps)

                self.step_instruction()
                steps += 1
        finally:
            self._running = False

    # @intent:post-condition 保留中の停止要求は run() の終了時に消費されます。
    def _finish(self, reason: StopReason, address: int, steps: int) -> RunResult:
        self._stop_requested = False
        logger.debug("Run stopped: %s at %#06x after %d steps", reason.value, address, steps)
        return RunResult(reason=reason, address=address, steps=steps)

    # @intent:responsibility run() に停止を要求します。次の命令の実行前に停止します。
    # @intent:rationale run() の開始前に要求された場合も、その run() は命令を実行せずに停止します。
    def stop(self) -> None:
        self._stop_requested = True
