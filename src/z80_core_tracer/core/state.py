# z80_core_tracer/core/state.py
"""
Core Layer (CPU状態)

このモジュールは、CPUの基本的な状態（レジスタ群）を保持するデータ構造を定義します。
全てのレジスタは書き込みのたびに宣言されたビット幅でマスクされます。
"""
from dataclasses import dataclass
from typing import ClassVar, Dict, FrozenSet

# @intent:responsibility CPUのレジスタ状態を保持します。アーキテクチャ固有のレジスタはこれを拡張します。
@dataclass
class CpuState:
    """
    CPUのレジスタ状態を保持するデータクラス。
    これは抽象的な基底状態であり、特定のCPUアーキテクチャに応じて拡張されます。
    """
    pc: int = 0x0000  # Program Counter
    sp: int = 0x0000  # Stack Pointer

    # @intent:constant レジスタ名とそのマスク値の対応表。サブクラスで拡張します。
    REGISTER_MASKS: ClassVar[Dict[str, int]] = {"pc": 0xFFFF, "sp": 0xFFFF}
    # @intent:constant 真偽値として保持するフィールド名。
    BOOLEAN_FIELDS: ClassVar[FrozenSet[str]] = frozenset()

    # @intent:invariant いかなる経路（コンストラクタ、属性代入、setattr）で書き込まれても、
    #                  レジスタ値は宣言されたビット幅に収まる。
    def __setattr__(self, name: str, value) -> None:
        mask = self.REGISTER_MASKS.get(name)
        if mask is not None:
            value = int(value) & mask
        elif name in self.BOOLEAN_FIELDS:
            value = bool(value)
        super().__setattr__(name, value)
