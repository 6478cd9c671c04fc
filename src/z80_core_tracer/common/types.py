"""
Z80コアトレーサーで共有する型定義。

シンボルマップはアセンブラ、ローダー、CPUのトレース表示が共有し、
レジスタレイアウトは Z80Cpu.get_register_layout() がレジスタエディタ向けに返します。
"""
from typing import Dict, List, NamedTuple

# @intent:data_structure シンボル名とアドレスをマッピングする辞書の型エイリアス。
# Assembler, Loader, CPUなど複数のレイヤーで共通して使用されます。
SymbolMap = Dict[str, int]

# @intent:data_structure 単一のレジスタの表示定義。レジスタエディタが動的にフィールドを生成するために使用される。
class RegisterInfo(NamedTuple):
    name: str
    width: int  # ビット幅 (8 or 16)

# @intent:data_structure レジスタグループの表示定義。"Main Registers", "Alternate Registers" のように関連するレジスタをまとめる。
class RegisterLayoutInfo(NamedTuple):
    group_name: str
    registers: List[RegisterInfo]
