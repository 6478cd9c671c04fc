# tests/arch/z80/test_assembler.py
"""
z80_core_tracer.arch.z80.assemblerモジュールの単体テスト。
"""
import pytest

from z80_core_tracer.common.errors import AssemblyError
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.arch.z80.assembler import Z80Assembler
from z80_core_tracer.arch.z80.instructions import (
    BASE_TABLE, CB_TABLE, ED_TABLE, INDEX_TABLE, INDEX_CB_TABLE, decode_opcode
)

# @intent:test_suite 2パスアセンブラのエンコード、ディレクティブ、シンボル解決、エラー収集を検証します。


def assemble_bytes(source, origin=0):
    result = Z80Assembler(origin=origin).assemble(source)
    assert result.ok, [str(e) for e in result.errors]
    return bytes(value for _, value in result.binary())


class TestZ80Assembler:
    # @intent:test_case_basic ラベル付きの基本的なプログラムをアセンブルできることを検証します。
    def test_z80_assembler_basic(self):
        lines = [
            "  LD A, 0x10",
            "  NOP",
            "LABEL: HALT",
        ]
        result = Z80Assembler().assemble(lines)
        assert result.ok
        assert result.symbols == {"LABEL": 3}
        assert result.binary() == [(0, 0x3E), (1, 0x10), (2, 0x00), (3, 0x76)]

    def test_program_with_org_and_backward_jump(self):
        source = """
                ORG $0100
        start:  LD A,$42
                LD B,10
        loop:   DJNZ loop     ; 自分自身へのループ
                JP start
                HALT
        """
        result = Z80Assembler().assemble(source)
        assert result.ok
        assert result.symbols == {"start": 0x0100, "loop": 0x0104}
        assert result.lines[0].address == 0x0100
        assert bytes(v for _, v in result.binary()) == bytes([
            0x3E, 0x42, 0x06, 0x0A, 0x10, 0xFE, 0xC3, 0x00, 0x01, 0x76,
        ])

    # @intent:test_case_forward 前方参照のラベルが2パス目で解決されることを検証します。
    def test_forward_reference(self):
        data = assemble_bytes(["JR skip", "NOP", "skip: CALL target", "target: RET"])
        assert data == bytes([0x18, 0x01, 0x00, 0xCD, 0x06, 0x00, 0xC9])

    # @intent:test_case_number_formats 数値表記（16進、2進、文字、式）を検証します。
    @pytest.mark.parametrize("operand, expected", [
        ("$1F", 0x1F), ("0x1F", 0x1F), ("1FH", 0x1F), ("0FFh", 0xFF), ("%101", 5),
        ("0b11", 3), ("101b", 5), ("31", 31), ("'A'", 0x41), ("2+3", 5), ("10-1", 9), ("-1", 0xFF),
    ])
    def test_number_formats(self, operand, expected):
        assert assemble_bytes([f"LD A,{operand}"]) == bytes([0x3E, expected])

    def test_current_address_symbol(self):
        assert assemble_bytes(["NOP", "JP $"]) == bytes([0x00, 0xC3, 0x01, 0x00])

    # @intent:test_case_registers 各種オペランド形式のエンコードを検証します。
    @pytest.mark.parametrize("source, expected", [
        ("LD B,C", [0x41]),
        ("LD (HL),$05", [0x36, 0x05]),
        ("LD A,(HL)", [0x7E]),
        ("LD A,(BC)", [0x0A]),
        ("LD A,($1234)", [0x3A, 0x34, 0x12]),
        ("LD HL,($1234)", [0x2A, 0x34, 0x12]),
        ("LD DE,($1234)", [0xED, 0x5B, 0x34, 0x12]),
        ("LD SP,HL", [0xF9]),
        ("PUSH AF", [0xF5]),
        ("EX AF,AF'", [0x08]),
        ("EX (SP),HL", [0xE3]),
        ("JP (HL)", [0xE9]),
        ("JP (IX)", [0xDD, 0xE9]),
        ("JP NZ,$1234", [0xC2, 0x34, 0x12]),
        ("CALL M,$1234", [0xFC, 0x34, 0x12]),
        ("RET PO", [0xE0]),
        ("ADD A,B", [0x80]),
        ("SUB $10", [0xD6, 0x10]),
        ("CP (HL)", [0xBE]),
        ("ADD HL,SP", [0x39]),
        ("SBC HL,DE", [0xED, 0x52]),
        ("IN A,($FE)", [0xDB, 0xFE]),
        ("OUT ($FE),A", [0xD3, 0xFE]),
        ("IM 2", [0xED, 0x5E]),
        ("RST 38H", [0xFF]),
        ("RST $08", [0xCF]),
        ("BIT 7,H", [0xCB, 0x7C]),
        ("SET 0,(HL)", [0xCB, 0xC6]),
        ("SRL A", [0xCB, 0x3F]),
        ("LDIR", [0xED, 0xB0]),
        ("LD A,I", [0xED, 0x57]),
    ])
    def test_encodings(self, source, expected):
        assert assemble_bytes([source]) == bytes(expected)

    # @intent:test_case_index (IX+d)/(IY+d) の変位エンコードを検証します。
    @pytest.mark.parametrize("source, expected", [
        ("LD IX,$1234", [0xDD, 0x21, 0x34, 0x12]),
        ("LD IY,$1234", [0xFD, 0x21, 0x34, 0x12]),
        ("LD A,(IX+5)", [0xDD, 0x7E, 0x05]),
        ("LD A,(IY-3)", [0xFD, 0x7E, 0xFD]),
        ("LD (IX),B", [0xDD, 0x70, 0x00]),
        ("LD (IX + 2),$99", [0xDD, 0x36, 0x02, 0x99]),
        ("INC (IY+1)", [0xFD, 0x34, 0x01]),
        ("ADD IX,IX", [0xDD, 0x29]),
        ("PUSH IY", [0xFD, 0xE5]),
        ("EX (SP),IX", [0xDD, 0xE3]),
    ])
    def test_index_encodings(self, source, expected):
        assert assemble_bytes([source]) == bytes(expected)

    # @intent:test_case_directives DB/DW/DS/EQU/END ディレクティブを検証します。
    def test_directives(self):
        source = [
            "COUNT EQU 3",
            "LIMIT: EQU COUNT+1",
            "      DB 1,COUNT,\"Hi\",'x'",
            "      DW $1234,LIMIT",
            "      DEFS 2,$FF",
            "      DEFB LIMIT",
            "      END",
            "      NOP",
        ]
        result = Z80Assembler().assemble(source)
        assert result.ok
        assert result.symbols == {"COUNT": 3, "LIMIT": 4}
        assert bytes(v for _, v in result.binary()) == bytes([
            0x01, 0x03, ord("H"), ord("i"), ord("x"),
            0x34, 0x12, 0x04, 0x00,
            0xFF, 0xFF,
            0x04,
        ])

    def test_comments_and_blank_lines(self):
        data = assemble_bytes(["; header", "", "   NOP ; trailing", "LD A,';'"])
        assert data == bytes([0x00, 0x3E, 0x3B])

    def test_case_insensitive_mnemonics(self):
        assert assemble_bytes(["ld a,(ix+1)", "halt"]) == bytes([0xDD, 0x7E, 0x01, 0x76])

    # @intent:test_case_index_cb インデックスのビット操作命令では変位の後に命令コードが置かれることを検証します。
    def test_index_bit_operations(self):
        assert assemble_bytes(["SET 0,(IX+5)"]) == bytes([0xDD, 0xCB, 0x05, 0xC6])
        assert assemble_bytes(["BIT 7,(IY-1)"]) == bytes([0xFD, 0xCB, 0xFF, 0x7E])
        assert assemble_bytes(["rr (iy+2)", "NOP"]) == bytes([0xFD, 0xCB, 0x02, 0x1E, 0x00])

    def test_origin_parameter(self):
        result = Z80Assembler(origin=0x8000).assemble(["here: JR here"])
        assert result.symbols["here"] == 0x8000
        assert result.binary() == [(0x8000, 0x18), (0x8001, 0xFE)]


class TestAssemblerErrors:
    # @intent:test_case_relative_range 相対ジャンプの範囲外が行番号付きのエラーとして報告されることを検証します。
    def test_relative_jump_out_of_range(self):
        source = ["start: NOP", "  DS 200", "  JR start"]
        result = Z80Assembler().assemble(source)
        assert not result.ok
        error = result.errors[0]
        assert isinstance(error, AssemblyError)
        assert error.message == "Relative jump out of range"
        assert error.line_number == 3
        assert error.address == 201
        with pytest.raises(AssemblyError, match="Relative jump out of range"):
            result.raise_for_errors()

    @pytest.mark.parametrize("target, ok", [(-126, True), (-127, False), (129, True), (130, False)])
    def test_relative_jump_boundaries(self, target, ok):
        # 飛び先 = 命令アドレス(0x100) + 2 + offset
        result = Z80Assembler(origin=0x100).assemble([f"JR {0x100 + target}"])
        assert result.ok is ok

    # @intent:test_case_unknown 未知の命令と不正なオペランドを区別して報告することを検証します。
    def test_unknown_instruction(self):
        result = Z80Assembler().assemble(["NOP", "FOO A"])
        assert [e.message for e in result.errors] == ["Unknown instruction: FOO"]
        assert result.errors[0].line_number == 2

    def test_invalid_operands(self):
        result = Z80Assembler().assemble(["LD (BC),B"])
        assert result.errors[0].message == "Invalid operands for LD: (BC),B"

    def test_value_out_of_range(self):
        result = Z80Assembler().assemble(["LD A,$100"])
        assert result.errors[0].message == "Value out of range: 256"

    def test_undefined_symbol(self):
        result = Z80Assembler().assemble(["JP nowhere"])
        assert result.errors[0].message == "Undefined symbol: nowhere"

    def test_duplicate_symbol(self):
        result = Z80Assembler().assemble(["a1: NOP", "a1: NOP"])
        assert result.errors[0].message == "Duplicate symbol: a1"

    def test_errors_are_collected(self):
        result = Z80Assembler().assemble(["FOO", "NOP", "LD A,$1FF"])
        assert [e.line_number for e in result.errors] == [1, 3]
        assert len(result.lines) == 1


class TestAssemblerDecoderConsistency:
    # @intent:test_case_round_trip 全てのデコード結果を再アセンブルすると同じ命令表記に戻ることを検証します。
    @pytest.mark.parametrize("prefix, table", [
        (None, BASE_TABLE), (0xCB, CB_TABLE), (0xED, ED_TABLE), (0xDD, INDEX_TABLE), (0xFD, INDEX_TABLE),
    ])
    def test_disassembly_reassembles(self, prefix, table):
        for opcode, definition in enumerate(table):
            if definition is None:
                continue
            head = [opcode] if prefix is None else [prefix, opcode]
            raw = head + [0x00] * (definition.length - len(head))

            bus = MemoryBus()
            bus.load_program(raw, 0x0000)
            text = decode_opcode(raw[0], bus, 0x0000, read=bus.peek).display_text()

            result = Z80Assembler().assemble([text])
            assert result.ok, (text, [str(e) for e in result.errors])
            reassembled = bytes(v for _, v in result.binary())

            check_bus = MemoryBus()
            check_bus.load_program(reassembled, 0x0000)
            check = decode_opcode(reassembled[0], check_bus, 0x0000, read=check_bus.peek)
            assert check.display_text() == text
            assert len(reassembled) <= definition.length

    @pytest.mark.parametrize("prefix", [0xDD, 0xFD])
    def test_index_bit_operations_reassemble(self, prefix):
        for opcode, definition in enumerate(INDEX_CB_TABLE):
            if definition is None:
                continue
            raw = [prefix, 0xCB, 0xFB, opcode]
            bus = MemoryBus()
            bus.load_program(raw, 0x0000)
            text = decode_opcode(prefix, bus, 0x0000, read=bus.peek).display_text()

            result = Z80Assembler().assemble([text])
            assert result.ok, (text, [str(e) for e in result.errors])
            assert bytes(v for _, v in result.binary()) == bytes(raw), text
