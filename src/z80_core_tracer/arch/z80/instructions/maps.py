"""
Z80命令の正準オペコード表。

各ページ（プレフィックスなし、CB、ED、DD/FD）は256要素のリストで、
未定義のオペコードは None です。デコーダ、逆アセンブラ、アセンブラはすべてこの表を参照します。
DD と FD は同じ表を共有し、テンプレート中の "IX" は FD の場合 "IY" に読み替えます。
DD CB / FD CB は変位の後に命令コードが続く4バイト命令で、INDEX_CB_TABLE を参照します。
"""
from typing import Dict, List, Optional

from .base import (
    InstructionDef, Executor, operand_size,
    REGISTER_NAMES, SS_NAMES, QQ_NAMES, CONDITION_NAMES, ALU_TEMPLATES, SHIFT_NAMES
)
from .load import (
    execute_ld_r_n, execute_ld_r_r_prime, execute_ld_indirect_a, execute_ld_nn_a, execute_ld_a_nn,
    execute_ld_ss_nn, execute_ld_nn_hl, execute_ld_hl_nn, execute_ld_sp_hl,
    execute_ld_nn_ss, execute_ld_ss_nn_indirect, execute_push_pop, execute_ld_special_a,
    execute_block_transfer, execute_block_compare, execute_rrd_rld,
    execute_ld_ix_nn, execute_ld_nn_ix, execute_ld_ix_nn_indirect, execute_ld_r_ix_d,
    execute_ld_ix_d_r, execute_ld_ix_d_n, execute_push_pop_ix, execute_ld_sp_ix
)
from .alu import (
    execute_alu_r, execute_alu_n, execute_inc_dec8, execute_daa, execute_cpl, execute_scf,
    execute_ccf, execute_neg, execute_rotate_a, execute_inc_dec16, execute_add_hl_ss,
    execute_adc_hl_ss, execute_sbc_hl_ss, execute_add_ix_pp, execute_inc_dec_ix,
    execute_inc_dec_ix_d, execute_alu_ix_d
)
from .control import (
    execute_nop, execute_halt, execute_di, execute_ei, execute_im,
    execute_jp_nn, execute_jp_cc_nn, execute_jp_hl, execute_jp_ix, execute_jr_e, execute_jr_cc_e,
    execute_djnz, execute_call_nn, execute_call_cc_nn, execute_ret, execute_ret_cc,
    execute_reti_retn, execute_rst, execute_ex_af, execute_exx, execute_ex_de_hl,
    execute_ex_sp_hl, execute_ex_sp_ix, execute_in_a_n, execute_out_n_a,
    execute_cb_rotate, execute_cb_bit, execute_cb_res_set,
    execute_cb_rotate_ix_d, execute_cb_bit_ix_d, execute_cb_res_set_ix_d
)

InstructionTable = List[Optional[InstructionDef]]


# @intent:utility_function 表の指定位置に命令定義を登録します。命令長はテンプレートから算出します。
# @intent:pre-condition 同じ位置への二重登録は表の構築ミスであり、ValueErrorとなります。
def _define(table: InstructionTable, opcode: int, template: str, cycles: int,
            execute: Executor, prefix_length: int = 0) -> None:
    if table[opcode] is not None:
        raise ValueError(f"Duplicate opcode definition {opcode:02X}: {template}")
    length = prefix_length + 1 + operand_size(template)
    table[opcode] = InstructionDef(template, length, cycles, execute)


# @intent:responsibility プレフィックスなしのページを構築します。
def _build_base_table() -> InstructionTable:
    table: InstructionTable = [None] * 256

    _define(table, 0x00, "NOP", 4, execute_nop)
    for k, ss in enumerate(SS_NAMES):
        _define(table, 0x01 | (k << 4), f"LD {ss},nn", 10, execute_ld_ss_nn)
        _define(table, 0x03 | (k << 4), f"INC {ss}", 6, execute_inc_dec16)
        _define(table, 0x09 | (k << 4), f"ADD HL,{ss}", 11, execute_add_hl_ss)
        _define(table, 0x0B | (k << 4), f"DEC {ss}", 6, execute_inc_dec16)

    _define(table, 0x02, "LD (BC),A", 7, execute_ld_indirect_a)
    _define(table, 0x0A, "LD A,(BC)", 7, execute_ld_indirect_a)
    _define(table, 0x12, "LD (DE),A", 7, execute_ld_indirect_a)
    _define(table, 0x1A, "LD A,(DE)", 7, execute_ld_indirect_a)
    _define(table, 0x22, "LD (nn),HL", 16, execute_ld_nn_hl)
    _define(table, 0x2A, "LD HL,(nn)", 16, execute_ld_hl_nn)
    _define(table, 0x32, "LD (nn),A", 13, execute_ld_nn_a)
    _define(table, 0x3A, "LD A,(nn)", 13, execute_ld_a_nn)

    for k, reg in enumerate(REGISTER_NAMES):
        memory = reg == "(HL)"
        _define(table, 0x04 | (k << 3), f"INC {reg}", 11 if memory else 4, execute_inc_dec8)
        _define(table, 0x05 | (k << 3), f"DEC {reg}", 11 if memory else 4, execute_inc_dec8)
        _define(table, 0x06 | (k << 3), f"LD {reg},n", 10 if memory else 7, execute_ld_r_n)

    for opcode, name in ((0x07, "RLCA"), (0x0F, "RRCA"), (0x17, "RLA"), (0x1F, "RRA")):
        _define(table, opcode, name, 4, execute_rotate_a)

    _define(table, 0x08, "EX AF,AF'", 4, execute_ex_af)
    _define(table, 0x10, "DJNZ e", 13, execute_djnz)
    _define(table, 0x18, "JR e", 12, execute_jr_e)
    for k in range(4):
        _define(table, 0x20 | (k << 3), f"JR {CONDITION_NAMES[k]},e", 12, execute_jr_cc_e)

    _define(table, 0x27, "DAA", 4, execute_daa)
    _define(table, 0x2F, "CPL", 4, execute_cpl)
    _define(table, 0x37, "SCF", 4, execute_scf)
    _define(table, 0x3F, "CCF", 4, execute_ccf)

    # LD r,r' (0x40-0x7F)。0x76 は HALT。
    for opcode in range(0x40, 0x80):
        if opcode == 0x76:
            _define(table, opcode, "HALT", 4, execute_halt)
            continue
        dest = REGISTER_NAMES[(opcode >> 3) & 0b111]
        src = REGISTER_NAMES[opcode & 0b111]
        _define(table, opcode, f"LD {dest},{src}", 7 if "(HL)" in (dest, src) else 4, execute_ld_r_r_prime)

    # ALU A,r (0x80-0xBF)
    for opcode in range(0x80, 0xC0):
        src = REGISTER_NAMES[opcode & 0b111]
        template = ALU_TEMPLATES[(opcode >> 3) & 0b111].format(src)
        _define(table, opcode, template, 7 if src == "(HL)" else 4, execute_alu_r)

    for k, cc in enumerate(CONDITION_NAMES):
        _define(table, 0xC0 | (k << 3), f"RET {cc}", 11, execute_ret_cc)
        _define(table, 0xC2 | (k << 3), f"JP {cc},nn", 10, execute_jp_cc_nn)
        _define(table, 0xC4 | (k << 3), f"CALL {cc},nn", 17, execute_call_cc_nn)
        _define(table, 0xC6 | (k << 3), ALU_TEMPLATES[k].format("n"), 7, execute_alu_n)
        _define(table, 0xC7 | (k << 3), f"RST {k * 8:02X}H", 11, execute_rst)

    for k, qq in enumerate(QQ_NAMES):
        _define(table, 0xC1 | (k << 4), f"POP {qq}", 10, execute_push_pop)
        _define(table, 0xC5 | (k << 4), f"PUSH {qq}", 11, execute_push_pop)

    _define(table, 0xC3, "JP nn", 10, execute_jp_nn)
    _define(table, 0xC9, "RET", 10, execute_ret)
    _define(table, 0xCD, "CALL nn", 17, execute_call_nn)
    _define(table, 0xD3, "OUT (n),A", 11, execute_out_n_a)
    _define(table, 0xD9, "EXX", 4, execute_exx)
    _define(table, 0xDB, "IN A,(n)", 11, execute_in_a_n)
    _define(table, 0xE3, "EX (SP),HL", 19, execute_ex_sp_hl)
    _define(table, 0xE9, "JP (HL)", 4, execute_jp_hl)
    _define(table, 0xEB, "EX DE,HL", 4, execute_ex_de_hl)
    _define(table, 0xF3, "DI", 4, execute_di)
    _define(table, 0xF9, "LD SP,HL", 6, execute_ld_sp_hl)
    _define(table, 0xFB, "EI", 4, execute_ei)
    return table


# @intent:responsibility CBページ（ローテート/シフト、BIT、RES、SET）を構築します。全256エントリが定義されます。
def _build_cb_table() -> InstructionTable:
    table: InstructionTable = [None] * 256
    for opcode in range(256):
        group = opcode >> 6
        y = (opcode >> 3) & 0b111
        reg = REGISTER_NAMES[opcode & 0b111]
        memory = reg == "(HL)"
        if group == 0:
            _define(table, opcode, f"{SHIFT_NAMES[y]} {reg}", 15 if memory else 8, execute_cb_rotate, 1)
        elif group == 1:
            _define(table, opcode, f"BIT {y},{reg}", 12 if memory else 8, execute_cb_bit, 1)
        else:
            word = "RES" if group == 2 else "SET"
            _define(table, opcode, f"{word} {y},{reg}", 15 if memory else 8, execute_cb_res_set, 1)
    return table


# @intent:responsibility EDページ（拡張命令）を構築します。
def _build_ed_table() -> InstructionTable:
    table: InstructionTable = [None] * 256
    for k, ss in enumerate(SS_NAMES):
        _define(table, 0x42 | (k << 4), f"SBC HL,{ss}", 15, execute_sbc_hl_ss, 1)
        _define(table, 0x43 | (k << 4), f"LD (nn),{ss}", 20, execute_ld_nn_ss, 1)
        _define(table, 0x4A | (k << 4), f"ADC HL,{ss}", 15, execute_adc_hl_ss, 1)
        _define(table, 0x4B | (k << 4), f"LD {ss},(nn)", 20, execute_ld_ss_nn_indirect, 1)

    _define(table, 0x44, "NEG", 8, execute_neg, 1)
    _define(table, 0x45, "RETN", 14, execute_reti_retn, 1)
    _define(table, 0x4D, "RETI", 14, execute_reti_retn, 1)
    _define(table, 0x46, "IM 0", 8, execute_im, 1)
    _define(table, 0x56, "IM 1", 8, execute_im, 1)
    _define(table, 0x5E, "IM 2", 8, execute_im, 1)
    _define(table, 0x47, "LD I,A", 9, execute_ld_special_a, 1)
    _define(table, 0x4F, "LD R,A", 9, execute_ld_special_a, 1)
    _define(table, 0x57, "LD A,I", 9, execute_ld_special_a, 1)
    _define(table, 0x5F, "LD A,R", 9, execute_ld_special_a, 1)
    _define(table, 0x67, "RRD", 18, execute_rrd_rld, 1)
    _define(table, 0x6F, "RLD", 18, execute_rrd_rld, 1)

    for opcode, name in ((0xA0, "LDI"), (0xA8, "LDD"), (0xB0, "LDIR"), (0xB8, "LDDR")):
        _define(table, opcode, name, 21 if opcode & 0x10 else 16, execute_block_transfer, 1)
    for opcode, name in ((0xA1, "CPI"), (0xA9, "CPD"), (0xB1, "CPIR"), (0xB9, "CPDR")):
        _define(table, opcode, name, 21 if opcode & 0x10 else 16, execute_block_compare, 1)
    return table


# @intent:responsibility DD/FD共通のインデックスレジスタページを構築します（テンプレートは IX 表記）。
def _build_index_table() -> InstructionTable:
    table: InstructionTable = [None] * 256
    for k, pp in enumerate(["BC", "DE", "IX", "SP"]):
        _define(table, 0x09 | (k << 4), f"ADD IX,{pp}", 15, execute_add_ix_pp, 1)

    _define(table, 0x21, "LD IX,nn", 14, execute_ld_ix_nn, 1)
    _define(table, 0x22, "LD (nn),IX", 20, execute_ld_nn_ix, 1)
    _define(table, 0x2A, "LD IX,(nn)", 20, execute_ld_ix_nn_indirect, 1)
    _define(table, 0x23, "INC IX", 10, execute_inc_dec_ix, 1)
    _define(table, 0x2B, "DEC IX", 10, execute_inc_dec_ix, 1)
    _define(table, 0x34, "INC (IX+d)", 23, execute_inc_dec_ix_d, 1)
    _define(table, 0x35, "DEC (IX+d)", 23, execute_inc_dec_ix_d, 1)
    _define(table, 0x36, "LD (IX+d),n", 19, execute_ld_ix_d_n, 1)

    for k, reg in enumerate(REGISTER_NAMES):
        if reg == "(HL)":
            continue
        _define(table, 0x46 | (k << 3), f"LD {reg},(IX+d)", 19, execute_ld_r_ix_d, 1)
        _define(table, 0x70 | k, f"LD (IX+d),{reg}", 19, execute_ld_ix_d_r, 1)

    for k, alu_template in enumerate(ALU_TEMPLATES):
        _define(table, 0x86 | (k << 3), alu_template.format("(IX+d)"), 19, execute_alu_ix_d, 1)

    _define(table, 0xE1, "POP IX", 14, execute_push_pop_ix, 1)
    _define(table, 0xE3, "EX (SP),IX", 23, execute_ex_sp_ix, 1)
    _define(table, 0xE5, "PUSH IX", 15, execute_push_pop_ix, 1)
    _define(table, 0xE9, "JP (IX)", 8, execute_jp_ix, 1)
    _define(table, 0xF9, "LD SP,IX", 10, execute_ld_sp_ix, 1)
    return table


# @intent:responsibility DD CB d op / FD CB d op のページを構築します（テンプレートは IX 表記）。
# @intent:rationale 命令コードは変位 d の後の4バイト目です。(IX+d) を対象とする公式命令（下位3ビットが 110）のみを定義します。
def _build_index_cb_table() -> InstructionTable:
    table: InstructionTable = [None] * 256
    for y in range(8):
        _define(table, 0x06 | (y << 3), f"{SHIFT_NAMES[y]} (IX+d)", 23, execute_cb_rotate_ix_d, 2)
        _define(table, 0x46 | (y << 3), f"BIT {y},(IX+d)", 20, execute_cb_bit_ix_d, 2)
        _define(table, 0x86 | (y << 3), f"RES {y},(IX+d)", 23, execute_cb_res_set_ix_d, 2)
        _define(table, 0xC6 | (y << 3), f"SET {y},(IX+d)", 23, execute_cb_res_set_ix_d, 2)
    return table


BASE_TABLE: InstructionTable = _build_base_table()
CB_TABLE: InstructionTable = _build_cb_table()
ED_TABLE: InstructionTable = _build_ed_table()
INDEX_TABLE: InstructionTable = _build_index_table()
INDEX_CB_TABLE: InstructionTable = _build_index_cb_table()

# @intent:constant プレフィックスバイトから2バイト目の表への対応。
PREFIX_TABLES: Dict[int, InstructionTable] = {
    0xCB: CB_TABLE,
    0xED: ED_TABLE,
    0xDD: INDEX_TABLE,
    0xFD: INDEX_TABLE,
}
