"""
Z80 データ転送命令（8/16ビットロード、スタック、ブロック転送）の実装。
"""
from z80_core_tracer.arch.z80.state import Z80CpuState
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Operation
from z80_core_tracer.arch.z80.alu import calculate_parity
from .base import (
    get_register_name, get_register_value, set_register_value,
    get_push_pop_reg_name, get_ss_reg_name,
    word_operand, index_register, index_address, push_word, pop_word
)

# --- 8-bit Loads ---

# @intent:responsibility LD r,n を実行します。(HL)の場合はメモリに書き込みます。
def execute_ld_r_n(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    reg_name = get_register_name((operation.opcode >> 3) & 0b111)
    set_register_value(state, bus, reg_name, operation.operand_bytes[0])

# @intent:responsibility LD r,r' を実行します。
def execute_ld_r_r_prime(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """汎用的なLD r,r'命令を実行します。"""
    dest_reg_name = get_register_name((operation.opcode >> 3) & 0b111)
    src_reg_name = get_register_name(operation.opcode & 0b111)
    value = get_register_value(state, bus, src_reg_name)
    set_register_value(state, bus, dest_reg_name, value)

# @intent:responsibility LD (BC),A / LD (DE),A / LD A,(BC) / LD A,(DE) を実行します。
def execute_ld_indirect_a(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    opcode = operation.opcode
    address = state.de if opcode & 0x10 else state.bc
    if opcode & 0x08:
        state.a = bus.read_byte(address)
    else:
        bus.write_byte(address, state.a)

def execute_ld_nn_a(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD (nn),A"""
    bus.write_byte(word_operand(operation), state.a)

def execute_ld_a_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD A,(nn)"""
    state.a = bus.read_byte(word_operand(operation))

# --- 16-bit Loads ---

# @intent:responsibility LD ss,nn を実行します。
def execute_ld_ss_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    ss_name = get_ss_reg_name((operation.opcode >> 4) & 0b11)
    setattr(state, ss_name.lower(), word_operand(operation))

def execute_ld_nn_hl(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD (nn),HL"""
    bus.write_word(word_operand(operation), state.hl)

def execute_ld_hl_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD HL,(nn)"""
    state.hl = bus.read_word(word_operand(operation))

def execute_ld_sp_hl(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.sp = state.hl

# @intent:responsibility ED 43/53/63/73: LD (nn),ss を実行します。
def execute_ld_nn_ss(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    ss_name = get_ss_reg_name((operation.opcode >> 4) & 0b11)
    bus.write_word(word_operand(operation), getattr(state, ss_name.lower()))

# @intent:responsibility ED 4B/5B/6B/7B: LD ss,(nn) を実行します。
def execute_ld_ss_nn_indirect(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    ss_name = get_ss_reg_name((operation.opcode >> 4) & 0b11)
    setattr(state, ss_name.lower(), bus.read_word(word_operand(operation)))

# @intent:responsibility PUSH qq / POP qq を実行します。
def execute_push_pop(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """PUSH/POP命令を実行します。"""
    opcode = operation.opcode
    reg_name = get_push_pop_reg_name((opcode >> 4) & 0b11).lower()
    if (opcode & 0x0F) == 0x05:
        push_word(state, bus, getattr(state, reg_name))
    else:
        setattr(state, reg_name, pop_word(state, bus))

# --- Special Registers ---

# @intent:responsibility ED 47/4F/57/5F: LD I,A / LD R,A / LD A,I / LD A,R を実行します。
# @intent:rationale LD A,I と LD A,R は S, Z を結果から設定し、H=N=0、P/V に IFF を反映します。
def execute_ld_special_a(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    sub = operation.opcode & 0xFF
    if sub == 0x47:
        state.i = state.a
    elif sub == 0x4F:
        state.r = state.a
    else:
        value = state.i if sub == 0x57 else state.r
        state.a = value
        state.flag_s = (value & 0x80) != 0
        state.flag_z = value == 0
        state.flag_h = False
        state.flag_n = False
        state.flag_pv = state.interrupts_enabled

# --- Block Transfer ---

# @intent:responsibility LDI/LDD/LDIR/LDDR を実行します。
# @intent:rationale 繰り返し版はBCが0でない間PCを命令先頭に戻し、1ステップにつき1バイトずつ転送します。
def execute_block_transfer(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    sub = operation.opcode & 0xFF
    step = -1 if sub & 0x08 else 1
    repeat = (sub & 0x10) != 0

    bus.write_byte(state.de, bus.read_byte(state.hl))
    state.hl = state.hl + step
    state.de = state.de + step
    state.bc = state.bc - 1

    state.flag_h = False
    state.flag_n = False
    state.flag_pv = state.bc != 0

    if repeat and state.bc != 0:
        state.pc = state.pc - operation.length

# @intent:responsibility CPI/CPD/CPIR/CPDR を実行します。Cフラグは保持されます。
def execute_block_compare(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    sub = operation.opcode & 0xFF
    step = -1 if sub & 0x08 else 1
    repeat = (sub & 0x10) != 0

    value = bus.read_byte(state.hl)
    result = (state.a - value) & 0xFF
    state.flag_s = (result & 0x80) != 0
    state.flag_z = result == 0
    state.flag_h = ((state.a & 0x0F) - (value & 0x0F)) < 0
    state.flag_n = True
    state.hl = state.hl + step
    state.bc = state.bc - 1
    state.flag_pv = state.bc != 0

    if repeat and state.bc != 0 and result != 0:
        state.pc = state.pc - operation.length

# @intent:responsibility RRD/RLD: A と (HL) の間でニブルを回転させます。
def execute_rrd_rld(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    memory = bus.read_byte(state.hl)
    a = state.a
    if (operation.opcode & 0xFF) == 0x67: # RRD
        new_memory = ((a & 0x0F) << 4) | (memory >> 4)
        state.a = (a & 0xF0) | (memory & 0x0F)
    else: # RLD
        new_memory = ((memory << 4) & 0xF0) | (a & 0x0F)
        state.a = (a & 0xF0) | (memory >> 4)
    bus.write_byte(state.hl, new_memory)
    state.flag_s = (state.a & 0x80) != 0
    state.flag_z = state.a == 0
    state.flag_h = False
    state.flag_pv = calculate_parity(state.a)
    state.flag_n = False

# --- Index Register Loads (DD/FD) ---

def execute_ld_ix_nn(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD IX,nn / LD IY,nn"""
    setattr(state, index_register(operation), word_operand(operation))

def execute_ld_nn_ix(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD (nn),IX / LD (nn),IY"""
    bus.write_word(word_operand(operation), getattr(state, index_register(operation)))

def execute_ld_ix_nn_indirect(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD IX,(nn) / LD IY,(nn)"""
    setattr(state, index_register(operation), bus.read_word(word_operand(operation)))

# @intent:responsibility LD r,(IX+d) を実行します。
def execute_ld_r_ix_d(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    reg_name = get_register_name((operation.opcode >> 3) & 0b111)
    set_register_value(state, bus, reg_name, bus.read_byte(index_address(state, operation)))

# @intent:responsibility LD (IX+d),r を実行します。
def execute_ld_ix_d_r(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    reg_name = get_register_name(operation.opcode & 0b111)
    bus.write_byte(index_address(state, operation), get_register_value(state, bus, reg_name))

def execute_ld_ix_d_n(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    """LD (IX+d),n: オペランドは d, n の順に並びます。"""
    bus.write_byte(index_address(state, operation), operation.operand_bytes[1])

def execute_push_pop_ix(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    reg_name = index_register(operation)
    if (operation.opcode & 0xFF) == 0xE5:
        push_word(state, bus, getattr(state, reg_name))
    else:
        setattr(state, reg_name, pop_word(state, bus))

def execute_ld_sp_ix(state: Z80CpuState, bus: MemoryBus, operation: Operation) -> None:
    state.sp = getattr(state, index_register(operation))
