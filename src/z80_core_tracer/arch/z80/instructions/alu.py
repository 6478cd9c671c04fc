"""
Z80 算術・論理演算命令の実装。
"""
from z80_core_tracer.arch.z80.state import Z80CpuState
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Operation
from z80_core_tracer.arch.z80.alu import (
    update_flags_add8, update_flags_sub8, update_flags_logic8, update_flags_inc_dec8,
    update_flags_add16, update_flags_adc16, update_flags_sbc16,
    rotate_accumulator, decimal_adjust
)
from .base import (
    get_register_name, get_register_value, set_register_value, get_ss_reg_name,
    index_register, index_address
)

# @intent:responsibility 8ビットALU演算（ADD/ADC/SUB/SBC/AND/XOR/OR/CP）をアキュムレータに適用します。
# @intent:pre-condition op_type はオペコードのビット5-3（0:ADD .. 7:CP）。
def alu_operation(state: Z80CpuState, op_type: int, value: int) -> None:
    a = state.a
    value &= 0xFF
    if op_type == 0: # ADD
        result = a + value
        update_flags_add8(state, a, value, result)
        state.a = result
    elif op_type == 1: # ADC
        carry = 1 if state.flag_c else 0
        result = a + value + carry
        update_flags_add8(state, a, value, result, carry)
        state.a = result
    elif op_type == 2: # SUB
        result = a - value
        update_flags_sub8(state, a, value, result)
        state.a = result
    elif op_type == 3: # SBC
        borrow = 1 if state.flag_c else 0
        result = a - value - borrow
        update_flags_sub8(state, a, value, result, borrow)
        state.a = result
    elif op_type == 4: # AND
        state.a = a & value
        update_flags_logic8(state, state.a, h_flag=True)
    elif op_type == 5: # XOR
        state.a = a ^ value
        update_flags_logic8(state, state.a)
    elif op_type == 6: # OR
        state.a = a | value
        update_flags_logic8(state, state.a)
    else: # CP (Aは変化しない)
        update_flags_sub8(state, a, value, a - value)

# --- 8-bit Arithmetic ---

# @intent:responsibility 0x80-0xBF: ALU A,r を実行します。
def execute_alu_r(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    reg_name = get_register_name(operation.opcode & 0b111)
    alu_operation(state, (operation.opcode >> 3) & 0b111, get_register_value(state, bus, reg_name))

# @intent:responsibility ALU A,n を実行します。
def execute_alu_n(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    alu_operation(state, (operation.opcode >> 3) & 0b111, operation.operand_bytes[0])

# @intent:responsibility INC r / DEC r を実行します。Cフラグは保持されます。
def execute_inc_dec8(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """INC r / DEC r 命令を実行します。"""
    opcode = operation.opcode
    reg_name = get_register_name((opcode >> 3) & 0b111)
    is_inc = (opcode & 0x07) == 0x04
    val = get_register_value(state, bus, reg_name)
    result = (val + 1) & 0xFF if is_inc else (val - 1) & 0xFF
    set_register_value(state, bus, reg_name, result)
    update_flags_inc_dec8(state, val, result, is_inc)

def execute_daa(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    decimal_adjust(state)

def execute_cpl(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.a = state.a ^ 0xFF
    state.flag_h = True
    state.flag_n = True

def execute_scf(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.flag_c = True
    state.flag_h = False
    state.flag_n = False

def execute_ccf(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.flag_h = state.flag_c
    state.flag_c = not state.flag_c
    state.flag_n = False

# @intent:responsibility ED 44: NEG (A = 0 - A) を実行します。
def execute_neg(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    a = state.a
    result = 0 - a
    update_flags_sub8(state, 0, a, result)
    state.a = result

# @intent:responsibility RLCA/RRCA/RLA/RRA を実行します。
def execute_rotate_a(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    rotate_accumulator(state, (operation.opcode >> 3) & 0b111)

# --- 16-bit Arithmetic ---

# @intent:responsibility INC ss / DEC ss を実行します。フラグは変化しません。
def execute_inc_dec16(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    reg_name = get_ss_reg_name((operation.opcode >> 4) & 0b11).lower()
    delta = -1 if operation.opcode & 0x08 else 1
    setattr(state, reg_name, (getattr(state, reg_name) + delta) & 0xFFFF)

# @intent:responsibility ADD HL,ss を実行します。
def execute_add_hl_ss(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    ss_name = get_ss_reg_name((operation.opcode >> 4) & 0b11)
    val_hl = state.hl
    val_ss = getattr(state, ss_name.lower())
    result = val_hl + val_ss
    update_flags_add16(state, val_hl, val_ss, result)
    state.hl = result & 0xFFFF

# @intent:responsibility ED 4A/5A/6A/7A: ADC HL,ss を実行します。
def execute_adc_hl_ss(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    ss_name = get_ss_reg_name((operation.opcode >> 4) & 0b11)
    val_hl = state.hl
    val_ss = getattr(state, ss_name.lower())
    carry = 1 if state.flag_c else 0
    result = val_hl + val_ss + carry
    update_flags_adc16(state, val_hl, val_ss, result, carry)
    state.hl = result & 0xFFFF

# @intent:responsibility ED 42/52/62/72: SBC HL,ss を実行します。
def execute_sbc_hl_ss(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    ss_name = get_ss_reg_name((operation.opcode >> 4) & 0b11)
    val_hl = state.hl
    val_ss = getattr(state, ss_name.lower())
    borrow = 1 if state.flag_c else 0
    result = val_hl - val_ss - borrow
    update_flags_sbc16(state, val_hl, val_ss, result, borrow)
    state.hl = result & 0xFFFF

# --- Index Register Arithmetic (DD/FD) ---

# @intent:responsibility ADD IX,pp を実行します。pp の HL 位置は IX 自身を指します。
def execute_add_ix_pp(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    index_name = index_register(operation)
    pp_code = (operation.opcode >> 4) & 0b11
    pp_name = index_name if pp_code == 0b10 else get_ss_reg_name(pp_code).lower()
    val_ix = getattr(state, index_name)
    val_pp = getattr(state, pp_name)
    result = val_ix + val_pp
    update_flags_add16(state, val_ix, val_pp, result)
    setattr(state, index_name, result & 0xFFFF)

def execute_inc_dec_ix(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    index_name = index_register(operation)
    delta = -1 if operation.opcode & 0x08 else 1
    setattr(state, index_name, (getattr(state, index_name) + delta) & 0xFFFF)

# @intent:responsibility INC (IX+d) / DEC (IX+d) を実行します。
def execute_inc_dec_ix_d(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    address = index_address(state, operation)
    is_inc = (operation.opcode & 0xFF) == 0x34
    val = bus.read_byte(address)
    result = (val + 1) & 0xFF if is_inc else (val - 1) & 0xFF
    bus.write_byte(address, result)
    update_flags_inc_dec8(state, val, result, is_inc)

# @intent:responsibility ALU A,(IX+d) を実行します。
def execute_alu_ix_d(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    value = bus.read_byte(index_address(state, operation))
    alu_operation(state, (operation.opcode >> 3) & 0b111, value)
