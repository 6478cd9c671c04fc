"""
Z80 ALU (算術論理演算ユニット) およびフラグ操作ユーティリティ。

演算結果に基づいた正確なフラグ（S, Z, H, P/V, N, C）の計算と更新を担当します。
"""
from typing import Tuple

from z80_core_tracer.arch.z80.state import Z80CpuState

# @intent:responsibility 指定されたバイト値のパリティ（ビット1の数が偶数ならTrue）を計算します。
def calculate_parity(val: int) -> bool:
    """8ビット値のパリティ（偶数ならTrue）を計算します。"""
    val &= 0xFF
    val ^= val >> 4
    val ^= val >> 2
    val ^= val >> 1
    return (val & 1) == 0

# @intent:responsibility 8ビット加算の結果に基づいて全フラグを更新します。
def update_flags_add8(state: Z80CpuState, val1: int, val2: int, result: int, carry_in: int = 0) -> None:
    """ADD/ADC命令のフラグを更新します。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0
    # Half Carry: (val1 & 0x0F) + (val2 & 0x0F) + carry_in > 0x0F
    state.flag_h = ((val1 & 0x0F) + (val2 & 0x0F) + carry_in) > 0x0F

    # Overflow: 同符号の加算で結果の符号が変わった場合
    state.flag_pv = ((val1 ^ res8) & (val2 ^ res8) & 0x80) != 0

    state.flag_n = False
    state.flag_c = result > 0xFF

# @intent:responsibility 8ビット減算の結果に基づいて全フラグを更新します。
def update_flags_sub8(state: Z80CpuState, val1: int, val2: int, result: int, borrow_in: int = 0) -> None:
    """SUB/SBC/CP/NEG命令のフラグを更新します。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0
    # Half Carry (Borrow): (val1 & 0x0F) - (val2 & 0x0F) - borrow_in < 0
    state.flag_h = ((val1 & 0x0F) - (val2 & 0x0F) - borrow_in) < 0

    # Overflow: 異符号の減算で結果の符号が第一オペランドと異なる場合
    state.flag_pv = ((val1 ^ val2) & (val1 ^ res8) & 0x80) != 0

    state.flag_n = True
    state.flag_c = result < 0

# @intent:responsibility 8ビット論理演算の結果に基づいてフラグを更新します。
def update_flags_logic8(state: Z80CpuState, result: int, h_flag: bool = False) -> None:
    """AND/OR/XOR命令のフラグを更新します。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0
    state.flag_h = h_flag # ANDならTrue, OR/XORならFalse
    state.flag_pv = calculate_parity(res8)
    state.flag_n = False
    state.flag_c = False

# @intent:responsibility インクリメント/デクリメント命令のフラグを更新します（Cフラグは変化しません）。
def update_flags_inc_dec8(state: Z80CpuState, val: int, result: int, is_inc: bool) -> None:
    """INC/DEC命令のフラグを更新します。Cフラグは保持されます。"""
    res8 = result & 0xFF

    state.flag_s = (res8 & 0x80) != 0
    state.flag_z = res8 == 0

    if is_inc:
        state.flag_h = (val & 0x0F) == 0x0F
        state.flag_pv = val == 0x7F # 127 -> -128
        state.flag_n = False
    else:
        state.flag_h = (val & 0x0F) == 0x00
        state.flag_pv = val == 0x80 # -128 -> 127
        state.flag_n = True

# @intent:responsibility 16ビット加算の結果に基づいてフラグ（H, N, C）を更新します。
# @intent:rationale Z, S, P/Vフラグは影響を受けないことに注意してください。
def update_flags_add16(state: Z80CpuState, val1: int, val2: int, result: int) -> None:
    """ADD HL,ss / ADD IX,ss命令のフラグを更新します。"""
    # Half Carry: Bit 11から12へのキャリー
    state.flag_h = ((val1 & 0x0FFF) + (val2 & 0x0FFF)) > 0x0FFF
    state.flag_n = False
    state.flag_c = result > 0xFFFF

# @intent:responsibility ADC HL,ss の結果に基づいて全フラグを更新します。
def update_flags_adc16(state: Z80CpuState, val1: int, val2: int, result: int, carry_in: int) -> None:
    res16 = result & 0xFFFF
    state.flag_s = (res16 & 0x8000) != 0
    state.flag_z = res16 == 0
    state.flag_h = ((val1 & 0x0FFF) + (val2 & 0x0FFF) + carry_in) > 0x0FFF
    state.flag_pv = ((val1 ^ res16) & (val2 ^ res16) & 0x8000) != 0
    state.flag_n = False
    state.flag_c = result > 0xFFFF

# @intent:responsibility SBC HL,ss の結果に基づいて全フラグを更新します。
def update_flags_sbc16(state: Z80CpuState, val1: int, val2: int, result: int, borrow_in: int) -> None:
    res16 = result & 0xFFFF
    state.flag_s = (res16 & 0x8000) != 0
    state.flag_z = res16 == 0
    state.flag_h = ((val1 & 0x0FFF) - (val2 & 0x0FFF) - borrow_in) < 0
    state.flag_pv = ((val1 ^ val2) & (val1 ^ res16) & 0x8000) != 0
    state.flag_n = True
    state.flag_c = result < 0

# @intent:utility_function ローテート/シフト演算の結果値とキャリー出力を計算します（フラグは変更しません）。
# @intent:pre-condition op_index は CB命令のビット5-3（0:RLC 1:RRC 2:RL 3:RR 4:SLA 5:SRA 6:SLL 7:SRL）。
def _rotate_shift_value(val: int, op_index: int, carry_in: bool) -> Tuple[int, bool]:
    val &= 0xFF
    if op_index == 0: # RLC
        carry = (val & 0x80) != 0
        result = ((val << 1) | (1 if carry else 0)) & 0xFF
    elif op_index == 1: # RRC
        carry = (val & 0x01) != 0
        result = ((val >> 1) | (0x80 if carry else 0)) & 0xFF
    elif op_index == 2: # RL
        carry = (val & 0x80) != 0
        result = ((val << 1) | (1 if carry_in else 0)) & 0xFF
    elif op_index == 3: # RR
        carry = (val & 0x01) != 0
        result = ((val >> 1) | (0x80 if carry_in else 0)) & 0xFF
    elif op_index == 4: # SLA
        carry = (val & 0x80) != 0
        result = (val << 1) & 0xFF
    elif op_index == 5: # SRA
        carry = (val & 0x01) != 0
        result = (val >> 1) | (val & 0x80)
    elif op_index == 6: # SLL (undocumented: bit0に1が入る)
        carry = (val & 0x80) != 0
        result = ((val << 1) | 1) & 0xFF
    else: # SRL
        carry = (val & 0x01) != 0
        result = val >> 1
    return result, carry

# @intent:responsibility CB命令のローテート/シフトを実行し、全フラグを更新して結果を返します。
def rotate_shift8(state: Z80CpuState, val: int, op_index: int) -> int:
    """RLC/RRC/RL/RR/SLA/SRA/SLL/SRL の結果を返し、S, Z, H, P/V, N, C を更新します。"""
    result, carry = _rotate_shift_value(val, op_index, state.flag_c)
    state.flag_s = (result & 0x80) != 0
    state.flag_z = result == 0
    state.flag_h = False
    state.flag_pv = calculate_parity(result)
    state.flag_n = False
    state.flag_c = carry
    return result

# @intent:responsibility アキュムレータ専用ローテート（RLCA/RRCA/RLA/RRA）を実行します。
# @intent:rationale S, Z, P/V は保持され、H と N はリセット、C のみ更新されます。
def rotate_accumulator(state: Z80CpuState, op_index: int) -> None:
    result, carry = _rotate_shift_value(state.a, op_index, state.flag_c)
    state.a = result
    state.flag_h = False
    state.flag_n = False
    state.flag_c = carry

# @intent:responsibility 直前の加減算結果をBCDに補正します（DAA）。
def decimal_adjust(state: Z80CpuState) -> None:
    a = state.a
    correction = 0
    carry = state.flag_c
    if state.flag_h or (a & 0x0F) > 9:
        correction |= 0x06
    if carry or a > 0x99:
        correction |= 0x60
        carry = True

    if state.flag_n:
        state.flag_h = state.flag_h and (a & 0x0F) < 6
        result = (a - correction) & 0xFF
    else:
        state.flag_h = (a & 0x0F) > 9
        result = (a + correction) & 0xFF

    state.a = result
    state.flag_s = (result & 0x80) != 0
    state.flag_z = result == 0
    state.flag_pv = calculate_parity(result)
    state.flag_c = carry
