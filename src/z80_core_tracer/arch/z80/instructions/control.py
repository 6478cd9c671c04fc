"""
Z80 制御命令（分岐、ビット操作、I/O、システム制御）の実装。
"""
import logging

from z80_core_tracer.arch.z80.state import Z80CpuState
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Operation
from z80_core_tracer.arch.z80.alu import rotate_shift8
from .base import (
    get_register_name, get_register_value, set_register_value,
    condition_met, signed_byte, word_operand, index_register, index_address, push_word, pop_word
)

logger = logging.getLogger(__name__)

# @intent:constant 接続デバイスが存在しない場合に IN 命令が返す値（オープンバス）。
OPEN_BUS_VALUE = 0xFF

# --- System Control ---

def execute_nop(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """NOP命令を実行します（何もしません）。"""
    pass

# @intent:responsibility HALT命令を実行し、CPUを停止状態にします。
def execute_halt(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.halted = True

def execute_di(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.interrupts_enabled = False

def execute_ei(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.interrupts_enabled = True

# @intent:responsibility ED 46/56/5E: IM 0/1/2 を実行します（モード値の記録のみ）。
def execute_im(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.im = {0x46: 0, 0x56: 1, 0x5E: 2}[operation.opcode & 0xFF]

# --- Jumps ---

def execute_jp_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """JP nn"""
    state.pc = word_operand(operation)

def execute_jp_cc_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """JP cc,nn"""
    if condition_met(state, (operation.opcode >> 3) & 0b111):
        state.pc = word_operand(operation)

def execute_jp_hl(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """JP (HL): HLの値そのものへジャンプします（メモリ参照ではありません）。"""
    state.pc = state.hl

def execute_jp_ix(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.pc = getattr(state, index_register(operation))

# @intent:responsibility 相対ジャンプを実行します。PCは既に次の命令を指しています。
def _jump_relative(state: Z80CpuState, operation: Operation) -> None:
    state.pc = (state.pc + signed_byte(operation.operand_bytes[0])) & 0xFFFF

def execute_jr_e(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """JR e"""
    _jump_relative(state, operation)

def execute_jr_cc_e(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """JR NZ/Z/NC/C,e"""
    if condition_met(state, ((operation.opcode >> 3) & 0b111) - 4):
        _jump_relative(state, operation)

# @intent:responsibility DJNZ e: Bをデクリメントし、0でなければ相対ジャンプします。フラグは変化しません。
def execute_djnz(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.b = state.b - 1
    if state.b != 0:
        _jump_relative(state, operation)

# --- Calls and Returns ---

# @intent:responsibility CALL nn を実行します。戻り番地（次の命令）をスタックに積みます。
def execute_call_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    push_word(state, bus, state.pc)
    state.pc = word_operand(operation)

def execute_call_cc_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    if condition_met(state, (operation.opcode >> 3) & 0b111):
        execute_call_nn(state, bus, operation)

def execute_ret(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """RET"""
    state.pc = pop_word(state, bus)

def execute_ret_cc(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    if condition_met(state, (operation.opcode >> 3) & 0b111):
        state.pc = pop_word(state, bus)

# @intent:responsibility ED 45/4D: RETN/RETI を実行します。割り込みの配送は行わないため RET と同じ振る舞いです。
def execute_reti_retn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.pc = pop_word(state, bus)

# @intent:responsibility RST p を実行します。飛び先はオペコードのビット5-3×8です。
def execute_rst(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    push_word(state, bus, state.pc)
    state.pc = operation.opcode & 0x38

# --- Exchange ---

def execute_ex_af(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """EX AF,AF'"""
    state.exchange_af()

def execute_exx(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """EXX"""
    state.exchange_bc_de_hl()

def execute_ex_de_hl(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.de, state.hl = state.hl, state.de

# @intent:responsibility EX (SP),HL / EX (SP),IX を実行します。
def _exchange_stack_top(state: Z80CpuState, bus: MemoryBus, reg_name: str) -> None:
    stacked = bus.read_word(state.sp)
    bus.write_word(state.sp, getattr(state, reg_name))
    setattr(state, reg_name, stacked)

def execute_ex_sp_hl(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    _exchange_stack_top(state, bus, "hl")

def execute_ex_sp_ix(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    _exchange_stack_top(state, bus, index_register(operation))

# --- I/O ---

# @intent:responsibility IN A,(n) を実行します。I/Oデバイスは接続されていないため常に 0xFF を読み込みます。
def execute_in_a_n(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    logger.debug("IN from port %02X (no device)", operation.operand_bytes[0])
    state.a = OPEN_BUS_VALUE

# @intent:responsibility OUT (n),A を実行します。書き込まれた値は破棄されます。
def execute_out_n_a(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    logger.debug("OUT %02X to port %02X discarded", state.a, operation.operand_bytes[0])

# --- Bit Operations (CB, DD CB d, FD CB d) ---

def _bit_test(state: Z80CpuState, value: int, bit: int) -> None:
    is_zero = (value & (1 << bit)) == 0
    state.flag_z = is_zero
    state.flag_pv = is_zero
    state.flag_s = bit == 7 and not is_zero
    state.flag_h = True
    state.flag_n = False

def _res_set(value: int, sub: int) -> int:
    bit = (sub >> 3) & 0b111
    if sub >= 0xC0:
        return value | (1 << bit)
    return value & ~(1 << bit)

# @intent:responsibility CB 00-3F: ローテート/シフト命令を実行します。
def execute_cb_rotate(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    sub = operation.opcode & 0xFF
    reg_name = get_register_name(sub & 0b111)
    value = get_register_value(state, bus, reg_name)
    result = rotate_shift8(state, value, (sub >> 3) & 0b111)
    set_register_value(state, bus, reg_name, result)

# @intent:responsibility CB 40-7F: BIT b,r を実行します。Cフラグは保持されます。
def execute_cb_bit(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    sub = operation.opcode & 0xFF
    value = get_register_value(state, bus, get_register_name(sub & 0b111))
    _bit_test(state, value, (sub >> 3) & 0b111)

# @intent:responsibility CB 80-FF: RES b,r / SET b,r を実行します。フラグは変化しません。
def execute_cb_res_set(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    sub = operation.opcode & 0xFF
    reg_name = get_register_name(sub & 0b111)
    value = get_register_value(state, bus, reg_name)
    set_register_value(state, bus, reg_name, _res_set(value, sub))

# @intent:responsibility DD/FD CB d 06-3E: (IX+d)/(IY+d) のローテート/シフトを実行します。
# @intent:pre-condition operand_bytes[0] は変位 d、opcode の下位バイトは4バイト目の命令コードです。
def execute_cb_rotate_ix_d(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    address = index_address(state, operation)
    sub = operation.opcode & 0xFF
    bus.write_byte(address, rotate_shift8(state, bus.read_byte(address), (sub >> 3) & 0b111))

def execute_cb_bit_ix_d(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    address = index_address(state, operation)
    _bit_test(state, bus.read_byte(address), ((operation.opcode & 0xFF) >> 3) & 0b111)

def execute_cb_res_set_ix_d(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    address = index_address(state, operation)
    bus.write_byte(address, _res_set(bus.read_byte(address), operation.opcode & 0xFF) & 0xFF)
