# z80_core_tracer/config/models.py
"""
マシン構成ファイル（YAML）の内容を表すデータモデル。
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

PROGRAM_FORMATS = ("assembly", "intel_hex", "binary")

@dataclass
class MachineSettings:
    history_size: int = 100
    decode_fault_policy: str = "nop"  # "nop" | "raise"
    max_decode_faults: int = 100      # 保持するデコードフォルト記録の上限

@dataclass
class CpuInitialState:
    reset: bool = True  # 構築後に reset() を呼び出すかどうか
    pc: Optional[int] = None
    sp: Optional[int] = None
    registers: Dict[str, int] = field(default_factory=dict)  # 例: {"a": 0x10, "hl": 0x8000}
    flags: Dict[str, bool] = field(default_factory=dict)     # 例: {"z": True}

@dataclass
class ProgramSource:
    path: Path
    format: str = "assembly"  # "assembly" | "intel_hex" | "binary"
    start: int = 0x0000

@dataclass
class MachineConfig:
    machine: MachineSettings = field(default_factory=MachineSettings)
    initial_state: CpuInitialState = field(default_factory=CpuInitialState)
    programs: List[ProgramSource] = field(default_factory=list)
    breakpoints: List[int] = field(default_factory=list)
