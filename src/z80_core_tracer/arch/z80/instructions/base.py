"""
Z80命令セット実装のための共通ヘルパー関数と定数。
"""
from typing import Callable, List, NamedTuple, Tuple

from z80_core_tracer.arch.z80.state import Z80CpuState
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Operation

# Helper functions for register mapping
REGISTER_CODES = {
    0b000: "B", 0b001: "C", 0b010: "D", 0b011: "E",
    0b100: "H", 0b101: "L", 0b110: "(HL)", 0b111: "A"
}
REGISTER_NAMES = [REGISTER_CODES[code] for code in range(8)]
SS_NAMES = ["BC", "DE", "HL", "SP"]
QQ_NAMES = ["BC", "DE", "HL", "AF"]
CONDITION_NAMES = ["NZ", "Z", "NC", "C", "PO", "PE", "P", "M"]
ALU_TEMPLATES = ["ADD A,{}", "ADC A,{}", "SUB {}", "SBC A,{}", "AND {}", "XOR {}", "OR {}", "CP {}"]
SHIFT_NAMES = ["RLC", "RRC", "RL", "RR", "SLA", "SRA", "SLL", "SRL"]

# @intent:constant テンプレート中のオペランドプレースホルダと、それが消費するバイト数。
PLACEHOLDER_SIZES = {"n": 1, "(n)": 1, "nn": 2, "(nn)": 2, "e": 1, "(IX+d)": 1, "(IY+d)": 1}

Executor = Callable[[Z80CpuState, MemoryBus, Operation], None]


# @intent:data_structure 正準オペコード表の1エントリ。デコーダ、逆アセンブラ、アセンブラが共有します。
class InstructionDef(NamedTuple):
    template: str   # 例: "LD A,n", "JR NZ,e", "LD (IX+d),n"
    length: int     # プレフィックスとオペランドを含むバイト長
    cycles: int     # 参考クロック数
    execute: Executor


# @intent:utility_function 命令テンプレートをニーモニックとオペランドトークンに分割します。
def split_template(template: str) -> Tuple[str, List[str]]:
    parts = template.split(" ", 1)
    word = parts[0]
    operands = parts[1].split(",") if len(parts) > 1 else []
    return word, operands

# @intent:utility_function テンプレートのオペランドが消費するバイト数の合計を返します。
def operand_size(template: str) -> int:
    _, operands = split_template(template)
    return sum(PLACEHOLDER_SIZES.get(token, 0) for token in operands)

# @intent:utility_function 指定されたコードに対応するレジスタ名を返します。
def get_register_name(code: int) -> str:
    return REGISTER_CODES.get(code, "UNKNOWN_REG")

# @intent:utility_function レジスタ名（または(HL)）に基づいて現在の値を取得します。
def get_register_value(state: Z80CpuState, bus: MemoryBus, reg_name: str) -> int:
    if reg_name == "(HL)":
        return bus.read_byte(state.hl)
    return getattr(state, reg_name.lower())

# @intent:utility_function レジスタ名（または(HL)）に値を設定します。
def set_register_value(state: Z80CpuState, bus: MemoryBus, reg_name: str, value: int) -> None:
    if reg_name == "(HL)":
        bus.write_byte(state.hl, value & 0xFF)
    else:
        setattr(state, reg_name.lower(), value & 0xFF)

# @intent:utility_function PUSH/POP命令で使用されるレジスタペア名を返します。
def get_push_pop_reg_name(code: int) -> str:
    return {0b00: "BC", 0b01: "DE", 0b10: "HL", 0b11: "AF"}.get(code, "UNKNOWN")

# @intent:utility_function 16ビット演算で使用されるレジスタペア名(ss)を返します。
def get_ss_reg_name(code: int) -> str:
    return {0b00: "BC", 0b01: "DE", 0b10: "HL", 0b11: "SP"}.get(code, "UNKNOWN")

# @intent:utility_function 条件コード(cc)が成立しているかを判定します。
def condition_met(state: Z80CpuState, cc_code: int) -> bool:
    if cc_code == 0: return not state.flag_z  # NZ
    if cc_code == 1: return state.flag_z      # Z
    if cc_code == 2: return not state.flag_c  # NC
    if cc_code == 3: return state.flag_c      # C
    if cc_code == 4: return not state.flag_pv # PO
    if cc_code == 5: return state.flag_pv     # PE
    if cc_code == 6: return not state.flag_s  # P
    return state.flag_s                       # M

# @intent:utility_function 8ビット値を符号付き（-128..127）に変換します。
def signed_byte(value: int) -> int:
    value &= 0xFF
    return value - 0x100 if value >= 0x80 else value

# @intent:utility_function オペランドバイト列の指定位置からリトルエンディアンの16ビット値を取り出します。
def word_operand(operation: Operation, index: int = 0) -> int:
    low = operation.operand_bytes[index]
    high = operation.operand_bytes[index + 1]
    return (high << 8) | low

# @intent:utility_function DD/FD プレフィックス命令が対象とするインデックスレジスタ名（"ix"/"iy"）を返します。
# @intent:pre-condition opcode は (prefix << 8) | op、または DD/FD CB 命令では (prefix << 16) | (0xCB << 8) | op です。
def index_register(operation: Operation) -> str:
    prefix = operation.opcode >> 16 if operation.opcode > 0xFFFF else operation.opcode >> 8
    return "ix" if prefix == 0xDD else "iy"

# @intent:utility_function (IX+d)/(IY+d) の実効アドレスを計算します。dは先頭のオペランドバイトです。
def index_address(state: Z80CpuState, operation: Operation) -> int:
    base = getattr(state, index_register(operation))
    return (base + signed_byte(operation.operand_bytes[0])) & 0xFFFF

# @intent:utility_function 16ビット値をスタックに積みます（上位バイトが先）。
def push_word(state: Z80CpuState, bus: MemoryBus, value: int) -> None:
    state.sp = (state.sp - 1) & 0xFFFF
    bus.write_byte(state.sp, (value >> 8) & 0xFF)
    state.sp = (state.sp - 1) & 0xFFFF
    bus.write_byte(state.sp, value & 0xFF)

# @intent:utility_function スタックから16ビット値を取り出します。
def pop_word(state: Z80CpuState, bus: MemoryBus) -> int:
    low = bus.read_byte(state.sp)
    state.sp = (state.sp + 1) & 0xFFFF
    high = bus.read_byte(state.sp)
    state.sp = (state.sp + 1) & 0xFFFF
    return (high << 8) | low
