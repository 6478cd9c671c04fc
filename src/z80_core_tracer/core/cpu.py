# z80_core_tracer/core/cpu.py
"""
Core Layer (抽象CPU)

このモジュールは、CPUの基本的な状態管理と命令サイクルの駆動に関する抽象化を提供します。
具体的な命令の振る舞いはInstruction Layerに移譲されます。
"""
import copy
from collections import deque
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional, List, Dict, Tuple

from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Snapshot, Operation, Metadata
from z80_core_tracer.core.state import CpuState
from z80_core_tracer.common.errors import DecodeFaultError
from z80_core_tracer.common.types import SymbolMap, RegisterLayoutInfo

logger = logging.getLogger(__name__)

# @intent:constant 保持するデコードフォルト記録の既定の上限件数。総数は decode_fault_count で参照できます。
DEFAULT_MAX_DECODE_FAULTS = 100


# @intent:responsibility 未定義オペコードに遭遇した際の振る舞いを定義します。
class DecodeFaultPolicy(Enum):
    NOP = "nop"       # フォルトを記録し、未定義バイトを読み飛ばして実行を継続する
    RAISE = "raise"   # フォルトを記録し、状態を変更せずに DecodeFaultError を送出する


# @intent:responsibility 診断用に記録されるデコードフォルト事象。
@dataclass(frozen=True)
class DecodeFault:
    address: int
    opcode_bytes: Tuple[int, ...]
    instruction_count: int # フォルト発生時点での実行済み命令数

    def describe(self) -> str:
        hex_bytes = " ".join(f"{b:02X}" for b in self.opcode_bytes)
        return f"Unknown opcode {hex_bytes} at {self.address:#06x}"


# @intent:responsibility 抽象CPUの基本機能とインターフェースを定義します。
class AbstractCpu(ABC):
    """
    全てのCPUエミュレーションの基底となる抽象クラス。
    MemoryBusとのインターフェース、基本的な状態管理、命令サイクルの抽象化を提供します。
    """
    # @intent:responsibility CPUの状態とバスへの参照を初期化します。
    # @intent:pre-condition `bus`は有効なMemoryBusオブジェクトである必要があります。
    # @intent:rationale コンストラクタはリセットを暗黙に行いません。電源投入時の状態にするには reset() を呼び出します。
    def __init__(self, bus: MemoryBus, decode_fault_policy: DecodeFaultPolicy = DecodeFaultPolicy.NOP,
                 max_decode_faults: int = DEFAULT_MAX_DECODE_FAULTS):
        if max_decode_faults < 0:
            raise ValueError("max_decode_faults must be non-negative")
        self._bus = bus
        self._state: CpuState = self._create_initial_state()
        self._cycle_count: int = 0
        self._instruction_count: int = 0
        self._symbol_map: SymbolMap = {}
        self._reverse_symbol_map: Dict[int, str] = {}
        self._decode_fault_policy = decode_fault_policy
        # 古い記録から破棄される
        self._decode_faults: Deque[DecodeFault] = deque(maxlen=max_decode_faults)
        self._decode_fault_count: int = 0
        self._last_snapshot: Optional[Snapshot] = None
        # @intent:rationale Stateオブジェクトの直接操作を避けるため、protectedな命名規則を採用。
        #                  外部からのアクセスは`get_state()`/`set_state()`メソッドを介して行う。

    @property
    def bus(self) -> MemoryBus:
        return self._bus

    @property
    def pc(self) -> int:
        return self._state.pc

    @property
    def halted(self) -> bool:
        return self._is_halted()

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def instruction_count(self) -> int:
        return self._instruction_count

    # @intent:responsibility 直近のデコードフォルト記録を古い順に返します（最大 max_decode_faults 件）。
    @property
    def decode_faults(self) -> List[DecodeFault]:
        return list(self._decode_faults)

    # @intent:responsibility reset() 以降に発生したデコードフォルトの総数を返します。
    @property
    def decode_fault_count(self) -> int:
        return self._decode_fault_count

    @property
    def max_decode_faults(self) -> int:
        return self._decode_faults.maxlen or 0

    @property
    def decode_fault_policy(self) -> DecodeFaultPolicy:
        return self._decode_fault_policy

    @decode_fault_policy.setter
    def decode_fault_policy(self, policy: DecodeFaultPolicy) -> None:
        self._decode_fault_policy = DecodeFaultPolicy(policy)

    def get_last_snapshot(self) -> Optional[Snapshot]:
        return self._last_snapshot

    # @intent:responsibility シンボルマップを設定します。
    def set_symbol_map(self, symbol_map: SymbolMap) -> None:
        """
        シンボルマップ（名前とアドレスの対応表）を設定します。
        """
        self._symbol_map = dict(symbol_map)
        # 逆引きマップを作成して、アドレスからラベルを素早く引けるようにする
        self._reverse_symbol_map = {addr: name for name, addr in symbol_map.items()}

    def get_symbol_map(self) -> SymbolMap:
        return dict(self._symbol_map)

    # @intent:responsibility 初期状態のCpuStateオブジェクトを生成します。
    # @intent:rationale 各CPUアーキテクチャで初期状態が異なる可能性があるため、抽象メソッドとして定義します。
    @abstractmethod
    def _create_initial_state(self) -> CpuState:
        """
        全レジスタがゼロのCPU状態を生成して返します。
        """
        pass

    # @intent:responsibility リセット直後の電源投入状態（SPの初期値など）を適用するフックです。
    def _apply_power_on_state(self, state: CpuState) -> None:
        pass

    # @intent:responsibility CPUをリセットし、電源投入時の状態に戻します。
    def reset(self) -> None:
        """
        全レジスタをゼロクリアした後、アーキテクチャ固有の電源投入時の値を適用します。
        実行カウンタとデコードフォルトの記録もクリアされます。メモリは変更しません。
        """
        self._state = self._create_initial_state()
        self._apply_power_on_state(self._state)
        self._cycle_count = 0
        self._instruction_count = 0
        self._decode_faults.clear()
        self._decode_fault_count = 0
        self._last_snapshot = None
        # @intent:rationale resetは_create_initial_stateを再呼び出しすることで、
        #                  初期状態の生成ロジックを一元化し、状態の整合性を保ちます。

    # @intent:responsibility 状態の独立したコピーを生成します。
    def _copy_state(self, state: CpuState) -> CpuState:
        return copy.deepcopy(state)

    # @intent:responsibility 現在のCPUの状態のコピーを返します。
    # @intent:post-condition 戻り値を変更してもライブ状態には影響しません。
    def get_state(self) -> CpuState:
        return self._copy_state(self._state)

    # @intent:responsibility 部分的な状態更新をライブ状態にマージします。
    @abstractmethod
    def set_state(self, update) -> None:
        pass

    # @intent:responsibility 保存済みの状態でライブ状態を丸ごと置き換えます（ステップバック用）。
    def restore_state(self, state: CpuState) -> None:
        self._state = self._copy_state(state)

    # @intent:responsibility ステップバックで取り消した命令の分だけ実行カウンタを巻き戻します。
    def rewind_counters(self, snapshot: Snapshot) -> None:
        self._instruction_count = max(0, snapshot.metadata.instruction_count - 1)
        self._cycle_count = max(0, snapshot.metadata.cycle_count - snapshot.operation.cycle_count)
        self._last_snapshot = None

    # @intent:responsibility HALT状態かどうかを返します。
    def _is_halted(self) -> bool:
        return False

    # @intent:responsibility メモリから次の命令（オペコード）をフェッチします。
    @abstractmethod
    def _fetch(self) -> int:
        """
        現在のPCからメモリの次の命令（オペコード）をフェッチし、その値を返します。
        PCの更新はデコード後に命令長に基づいて行われます。
        """
        pass

    # @intent:responsibility フェッチしたオペコードを解析し、Operationオブジェクトに変換します。
    @abstractmethod
    def _decode(self, opcode: int) -> Operation:
        pass

    # @intent:responsibility デコードされた命令を実行し、CPUの状態を更新します。
    @abstractmethod
    def _execute(self, operation: Operation) -> None:
        pass

    # @intent:responsibility CPUを1命令サイクル進め、その結果のスナップショットを返します。
    # @intent:rationale Template Methodパターンを採用し、共通の実行フロー（ログクリア→フェッチ→デコード→PC更新→実行→Snapshot生成）を定義します。
    # @intent:post-condition HALT状態では何も実行せずNoneを返し、状態を一切変更しません。
    def step(self) -> Optional[Snapshot]:
        """
        CPUを1命令サイクル進め、その時点でのCPUとバスの状態を含むSnapshotオブジェクトを返します。
        既にHALT状態の場合は None を返します。
        """
        if self._is_halted():
            return None

        # 1. 前処理: 前サイクルまでの残存ログを破棄
        self._bus.get_and_clear_activity_log()
        initial_pc = self._state.pc
        previous_state = self._copy_state(self._state)

        # 2. フェッチ
        opcode = self._fetch()

        # 3. デコード
        operation = self._decode(opcode)
        if operation.fault:
            self._handle_decode_fault(initial_pc, operation)

        # 4. PC更新 (Hook)
        self._update_pc(operation)

        # 5. 実行
        self._execute(operation)

        # 6. 後処理 & Snapshot生成
        self._last_snapshot = self._create_snapshot(initial_pc, operation, previous_state)
        return self._last_snapshot

    # @intent:responsibility デコードフォルトを記録し、ポリシーに応じて例外を送出します。
    def _handle_decode_fault(self, address: int, operation: Operation) -> None:
        fault = DecodeFault(
            address=address,
            opcode_bytes=tuple(bytes.fromhex(operation.opcode_hex)),
            instruction_count=self._instruction_count,
        )
        self._decode_faults.append(fault)
        self._decode_fault_count += 1
        logger.warning(fault.describe())
        if self._decode_fault_policy is DecodeFaultPolicy.RAISE:
            raise DecodeFaultError(fault.address, fault.opcode_bytes)

    # @intent:responsibility 命令実行前にPCを更新します。
    def _update_pc(self, operation: Operation) -> None:
        """
        命令実行前のPC更新。デフォルトは命令長分進める。
        """
        self._state.pc = (self._state.pc + operation.length) & 0xFFFF

    # @intent:responsibility スナップショットを生成します。
    def _create_snapshot(self, initial_pc: int, operation: Operation, previous_state: CpuState) -> Snapshot:
        """
        実行結果からSnapshotオブジェクトを生成する共通ロジック。
        """
        # このサイクルで発生したバスアクティビティを取得
        bus_activity = self._bus.get_and_clear_activity_log()

        self._cycle_count += operation.cycle_count
        self._instruction_count += 1

        # シンボル情報の取得
        symbol_label = self._reverse_symbol_map.get(initial_pc, "")
        symbol_info = f"{symbol_label}: " if symbol_label else ""
        symbol_info += operation.display_text()

        return Snapshot(
            state=self.get_state(),
            operation=operation,
            metadata=Metadata(
                cycle_count=self._cycle_count,
                symbol_info=symbol_info,
                instruction_count=self._instruction_count,
                address=initial_pc,
            ),
            bus_activity=bus_activity,
            previous_state=previous_state,
        )

    @abstractmethod
    def get_register_map(self) -> Dict[str, int]:
        """
        現在のレジスタ値を辞書形式で返す。
        レジスタエディタがCPUの内部構造を知らなくても値を表示できるようにするために使用される。
        """
        pass

    @abstractmethod
    def get_register_layout(self) -> List[RegisterLayoutInfo]:
        """
        レジスタをUI上でどのように配置・グループ化すべきかの定義を返す。
        """
        pass

    @abstractmethod
    def get_flag_state(self) -> Dict[str, bool]:
        """
        現在のフラグ（ステータスレジスタ）の各ビットの状態を辞書形式で返す。
        """
        pass

    @abstractmethod
    def disassemble(self, start_addr: int, length: int) -> List[Tuple[int, str, str]]:
        """
        指定されたメモリ範囲を逆アセンブルし、(address, hex_bytes, mnemonic) のタプルリストを返す。
        """
        pass
