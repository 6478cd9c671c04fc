# z80_core_tracer/core/snapshot.py
"""
実行状態の不変スナップショット

このモジュールは、1命令実行ごとのCPUとバスの状態を記録した不変のデータ構造を定義します。
UIへの情報提供と、実行履歴（ステップバック）の記録に用いる責務を負います。
"""
from dataclasses import dataclass, field
from typing import List, Optional

from z80_core_tracer.core.state import CpuState
from z80_core_tracer.transport.bus import BusAccessType, BusAccess

__all__ = ["BusAccessType", "BusAccess", "Operation", "Metadata", "Snapshot"]


# @intent:responsibility デコードされた命令の詳細を記録します。
@dataclass(frozen=True) # 不変データ構造
class Operation:
    """
    デコードされた命令の詳細（HEX、ニーモニック、オペランド）を記録するデータクラス。
    mnemonic はオペランドのプレースホルダを含む命令テンプレート（例: "LD A,n"）、
    operands はそのプレースホルダに対応する実際の値の表記です。
    """
    opcode_hex: str # 例: "3E", "DD21"
    mnemonic: str # 例: "LD A,n"
    operands: List[str] = field(default_factory=list) # 例: ["$42"]
    operand_bytes: List[int] = field(default_factory=list) # 生のオペランドバイト
    cycle_count: int = 0 # 命令実行に必要なクロックサイクル数（参考値）
    length: int = 1 # 命令のバイト長（プレフィックスを含む）
    opcode: int = 0 # ディスパッチキー。プレフィックス付きの場合は (prefix << 8) | opcode
    text: str = "" # 表示用に整形された命令（例: "LD A,$42"）
    fault: bool = False # 未定義オペコードとしてデコードされた場合 True

    # @intent:responsibility 表示用の命令文字列を返します。
    def display_text(self) -> str:
        if self.text:
            return self.text
        if self.operands:
            return f"{self.mnemonic} {', '.join(self.operands)}"
        return self.mnemonic

# @intent:responsibility 実行に関するメタデータを記録します。
@dataclass(frozen=True) # 不変データ構造
class Metadata:
    """
    実行に関するメタデータ（累計サイクル数、実行命令数、シンボル情報など）を記録するデータクラス。
    """
    cycle_count: int
    symbol_info: Optional[str] = None # 例: "main_loop: JP $1234"
    instruction_count: int = 0 # リセット後に実行された命令数（この命令を含む）
    address: int = 0 # この命令の先頭アドレス

# @intent:responsibility 1命令実行前後のCPUとバスの状態を不変に記録します。
@dataclass(frozen=True) # 不変データ構造
class Snapshot:
    """
    ある命令の実行直後における、CPUとバスの状態を記録した不変のデータ構造。
    state と previous_state はライブ状態から切り離されたコピーです。
    """
    state: CpuState
    operation: Operation
    metadata: Metadata
    bus_activity: List[BusAccess] = field(default_factory=list)
    previous_state: Optional[CpuState] = None # 実行直前の状態（ステップバック用）

    # @intent:rationale Snapshotは不変であるべきという原則に従い、frozen=Trueを設定。
    #                  リストなどのミュータブルなフィールドはdefault_factoryを使用し、
    #                  インスタンスごとに新しいリストが生成されるようにする。
