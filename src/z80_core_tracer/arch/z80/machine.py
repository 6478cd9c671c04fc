# z80_core_tracer/arch/z80/machine.py
"""
Z80マシンのファサード。

メモリバス、CPU、デバッガを1つのインスタンスにまとめ、レジスタエディタ、メモリエディタ、
デバッガビューなどの外部コンポーネントが利用する狭いAPIを提供します。
グローバルなインスタンスは持たず、呼び出し側が生成して明示的に受け渡します。
"""
import logging
from typing import Dict, List, Optional, Tuple, Union

from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.cpu import DecodeFault, DecodeFaultPolicy, DEFAULT_MAX_DECODE_FAULTS
from z80_core_tracer.core.snapshot import Snapshot
from z80_core_tracer.arch.z80.cpu import Z80Cpu
from z80_core_tracer.arch.z80.state import Z80CpuState, StateUpdate
from z80_core_tracer.arch.z80.assembler import Z80Assembler, AssemblyResult
from z80_core_tracer.debugger.debugger import Debugger, RunResult, DEFAULT_HISTORY_SIZE
from z80_core_tracer.common.types import RegisterLayoutInfo, SymbolMap

logger = logging.getLogger(__name__)


# @intent:responsibility Z80エミュレーションエンジンの公開インターフェースを提供します。
class Z80Machine:
    """
    64KBメモリ、Z80 CPU、デバッガを所有するマシン。
    生成直後は全レジスタがゼロ（SP=0）で、電源投入状態にするには reset() を呼び出します。
    """
    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE,
                 decode_fault_policy: DecodeFaultPolicy = DecodeFaultPolicy.NOP,
                 max_decode_faults: int = DEFAULT_MAX_DECODE_FAULTS):
        self._bus = MemoryBus()
        self._cpu = Z80Cpu(self._bus, DecodeFaultPolicy(decode_fault_policy), max_decode_faults)
        self._debugger = Debugger(self._cpu, history_size=history_size)

    @property
    def bus(self) -> MemoryBus:
        return self._bus

    @property
    def cpu(self) -> Z80Cpu:
        return self._cpu

    @property
    def debugger(self) -> Debugger:
        return self._debugger

    # @intent:responsibility 全レジスタ・フラグ・裏レジスタをゼロにし、SP=0xFFFF, PC=0x0000 に設定します。
    # @intent:post-condition メモリとブレークポイントは保持され、実行履歴とデコードフォルトの記録はクリアされます。
    def reset(self) -> None:
        self._cpu.reset()
        self._debugger.clear_history()
        logger.debug("Machine reset")

    # --- Memory ---

    def read_byte(self, address: int) -> int:
        return self._bus.read_byte(address)

    def write_byte(self, address: int, value: int) -> None:
        self._bus.write_byte(address, value)

    def read_word(self, address: int) -> int:
        return self._bus.read_word(address)

    def write_word(self, address: int, value: int) -> None:
        self._bus.write_word(address, value)

    def load_program(self, data, start_address: int = 0) -> int:
        return self._bus.load_program(data, start_address)

    def dump(self, start_address: int, length: int) -> bytes:
        return self._bus.dump(start_address, length)

    # --- State ---

    def get_state(self) -> Z80CpuState:
        return self._cpu.get_state()

    def set_state(self, update: Union[StateUpdate, Z80CpuState]) -> None:
        self._cpu.set_state(update)

    # @intent:responsibility レジスタ名をキーとする辞書で状態を部分更新します（レジスタエディタ用）。
    def update_registers(self, values: Dict[str, object]) -> None:
        self._cpu.set_state(StateUpdate.from_mapping(values))

    def register_map(self) -> Dict[str, int]:
        return self._cpu.get_register_map()

    def flag_state(self) -> Dict[str, bool]:
        return self._cpu.get_flag_state()

    def register_layout(self) -> List[RegisterLayoutInfo]:
        return self._cpu.get_register_layout()

    @property
    def halted(self) -> bool:
        return self._cpu.halted

    @property
    def instruction_count(self) -> int:
        return self._cpu.instruction_count

    @property
    def cycle_count(self) -> int:
        return self._cpu.cycle_count

    @property
    def decode_faults(self) -> List[DecodeFault]:
        return self._cpu.decode_faults

    @property
    def decode_fault_count(self) -> int:
        return self._cpu.decode_fault_count

    # --- Breakpoints ---

    def set_breakpoint(self, address: int) -> None:
        self._debugger.set_breakpoint(address)

    def clear_breakpoint(self, address: int) -> None:
        self._debugger.clear_breakpoint(address)

    def toggle_breakpoint(self, address: int) -> bool:
        return self._debugger.toggle_breakpoint(address)

    def clear_all_breakpoints(self) -> None:
        self._debugger.clear_all_breakpoints()

    def get_breakpoints(self) -> List[int]:
        return self._debugger.get_breakpoints()

    def has_breakpoint(self, address: int) -> bool:
        return self._debugger.has_breakpoint(address)

    # --- Execution ---

    # @intent:responsibility 1命令を実行します。ブレークポイントは参照しません。
    # @intent:post-condition 命令を実行した場合 True、既にHALT状態だった場合 False を返します。
    def step(self) -> bool:
        return self._debugger.step_instruction() is not None

    def run(self, max_steps: Optional[int] = None) -> RunResult:
        return self._debugger.run(max_steps=max_steps)

    def stop(self) -> None:
        self._debugger.stop()

    @property
    def history(self) -> List[Snapshot]:
        return self._debugger.get_history()

    def step_back(self) -> Optional[Snapshot]:
        return self._debugger.step_back()

    def last_snapshot(self) -> Optional[Snapshot]:
        return self._debugger.get_last_snapshot()

    # --- Assembly / Disassembly ---

    # @intent:responsibility ソースをアセンブルしてメモリに配置し、シンボルをトレースに反映します。
    # @intent:pre-condition エラーが1件でもあれば、1バイトもロードせずに AssemblyError を送出します。
    def assemble_and_load(self, source: str, start_address: int = 0) -> AssemblyResult:
        result = Z80Assembler(origin=start_address).assemble(source)
        result.raise_for_errors()
        for line in result.lines:
            self._bus.load_program(line.data, line.address)
        self.set_symbol_map(result.symbols)
        logger.info("Assembled %d bytes, %d symbols", sum(len(line.data) for line in result.lines),
                    len(result.symbols))
        return result

    def set_symbol_map(self, symbols: SymbolMap) -> None:
        self._cpu.set_symbol_map(symbols)

    def disassemble(self, start_address: int, length: int) -> List[Tuple[int, str, str]]:
        return self._cpu.disassemble(start_address, length)
