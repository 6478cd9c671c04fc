# z80_core_tracer/arch/z80/cpu.py
"""
Z80 CPUエミュレーションの中心モジュール。

このモジュールはZ80 CPUの具体的な実装を提供し、
AbstractCpuインターフェースを実装します。
"""
from typing import Dict, List, Tuple, Union

from z80_core_tracer.core.cpu import AbstractCpu, DecodeFaultPolicy, DEFAULT_MAX_DECODE_FAULTS
from z80_core_tracer.arch.z80.state import Z80CpuState, StateUpdate
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Operation
from z80_core_tracer.arch.z80.instructions import decode_opcode, execute_instruction
from z80_core_tracer.arch.z80 import disassembler
from z80_core_tracer.common.types import RegisterLayoutInfo, RegisterInfo

# @intent:constant リセット時のスタックポインタ初期値（メモリの最上位）。
RESET_STACK_POINTER = 0xFFFF

# @intent:responsibility Z80 CPUの具体的なエミュレーションロジックを提供します。
class Z80Cpu(AbstractCpu):
    """
    Z80 CPUをエミュレートするクラス。
    AbstractCpuを継承し、Z80固有の動作を実装します。
    """
    _state: Z80CpuState

    # @intent:responsibility Z80Cpuの初期化を行います。全レジスタはゼロで、reset()は呼び出しません。
    # @intent:pre-condition `bus`は有効なMemoryBusオブジェクトである必要があります。
    def __init__(self, bus: MemoryBus, decode_fault_policy: DecodeFaultPolicy = DecodeFaultPolicy.NOP,
                 max_decode_faults: int = DEFAULT_MAX_DECODE_FAULTS):
        super().__init__(bus, decode_fault_policy, max_decode_faults)

    # @intent:responsibility Z80 CPUの初期状態（全レジスタゼロのZ80CpuState）を生成します。
    def _create_initial_state(self) -> Z80CpuState:
        return Z80CpuState()

    # @intent:responsibility 電源投入時の値（SP=0xFFFF, PC=0x0000）を適用します。
    def _apply_power_on_state(self, state: Z80CpuState) -> None:
        state.sp = RESET_STACK_POINTER
        state.pc = 0x0000
        state.halted = False
        state.interrupts_enabled = False

    def _copy_state(self, state: Z80CpuState) -> Z80CpuState:
        return state.copy()

    def _is_halted(self) -> bool:
        return self._state.halted

    # @intent:responsibility 部分的な状態更新をライブ状態にマージします。
    # @intent:pre-condition `update`はStateUpdate、または完全なZ80CpuStateです。
    def set_state(self, update: Union[StateUpdate, Z80CpuState]) -> None:
        """
        指定されたフィールドのみをライブ状態に反映します。
        Z80CpuStateが渡された場合は全フィールドを持つ更新として扱います。
        """
        if isinstance(update, Z80CpuState):
            update = StateUpdate.from_state(update)
        elif not isinstance(update, StateUpdate):
            raise TypeError(f"set_state expects StateUpdate or Z80CpuState, got {type(update).__name__}")
        update.apply_to(self._state)

    # @intent:responsibility 現在のPCからオペコードをフェッチします。PCのインクリメントはこの時点では行わず、
    #                  stepメソッド内で命令長に応じて更新します。
    def _fetch(self) -> int:
        # フェッチ時のバスアクセス（読み込み）はMemoryBusによって自動的に記録されます。
        return self._bus.read_byte(self._state.pc)

    # @intent:responsibility フェッチしたオペコードをデコードし、Operationオブジェクトを返します。
    # @intent:rationale 実際のデコードロジックは`instructions`パッケージに委譲します。
    def _decode(self, opcode: int) -> Operation:
        # pcをdecode_opcodeに渡すのは、マルチバイト命令のオペランド読み込みのため
        return decode_opcode(opcode, self._bus, self._state.pc)

    # @intent:responsibility デコードされた命令を実行し、Z80の状態を更新します。
    def _execute(self, operation: Operation) -> None:
        execute_instruction(operation, self._state, self._bus)

    def get_register_map(self) -> Dict[str, int]:
        s = self._state
        return {
            "A": s.a, "F": s.f, "B": s.b, "C": s.c, "D": s.d, "E": s.e, "H": s.h, "L": s.l,
            "A'": s.a_, "F'": s.f_, "B'": s.b_, "C'": s.c_, "D'": s.d_, "E'": s.e_, "H'": s.h_, "L'": s.l_,
            "IX": s.ix, "IY": s.iy, "SP": s.sp, "PC": s.pc,
            "I": s.i, "R": s.r,
            "AF": s.af, "BC": s.bc, "DE": s.de, "HL": s.hl,
            "AF'": s.af_, "BC'": s.bc_, "DE'": s.de_, "HL'": s.hl_,
            "IM": s.im
        }

    def get_register_layout(self) -> List[RegisterLayoutInfo]:
        return [
            RegisterLayoutInfo("Main Registers", [
                RegisterInfo("AF", 16), RegisterInfo("BC", 16), RegisterInfo("DE", 16), RegisterInfo("HL", 16)
            ]),
            RegisterLayoutInfo("Alternate Registers", [
                RegisterInfo("AF'", 16), RegisterInfo("BC'", 16), RegisterInfo("DE'", 16), RegisterInfo("HL'", 16)
            ]),
            RegisterLayoutInfo("Index & Control", [
                RegisterInfo("IX", 16), RegisterInfo("IY", 16), RegisterInfo("SP", 16), RegisterInfo("PC", 16)
            ]),
            RegisterLayoutInfo("Special", [
                RegisterInfo("I", 8), RegisterInfo("R", 8), RegisterInfo("IM", 8)
            ])
        ]

    def get_flag_state(self) -> Dict[str, bool]:
        s = self._state
        return {
            "S": s.flag_s,
            "Z": s.flag_z,
            "H": s.flag_h,
            "PV": s.flag_pv,
            "N": s.flag_n,
            "C": s.flag_c
        }

    def disassemble(self, start_addr: int, length: int) -> List[Tuple[int, str, str]]:
        return disassembler.disassemble(self._bus, start_addr, length)
