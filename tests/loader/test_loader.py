# tests/loader/test_loader.py
"""
z80_core_tracer.loader.loaderモジュールの単体テスト。
"""
import pytest

from z80_core_tracer.common.errors import AssemblyError
from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.loader.loader import IntelHexLoader, BinaryLoader, AssemblyLoader

# @intent:test_suite Intel HEX、バイナリ、アセンブリソースの各ローダーを検証します。


class TestIntelHexLoader:
    @pytest.fixture
    def setup_bus(self):
        return MemoryBus()

    # @intent:test_case_load データレコードが指定アドレスに配置され、EOF以降は無視されることを検証します。
    def test_load_intel_hex(self, setup_bus, tmp_path):
        bus = setup_bus
        hex_file = tmp_path / "program.hex"
        hex_file.write_text(
            ":030100003E427606\n"
            ":00000001FF\n"
            ":01001000AA45\n"
        )
        loaded = IntelHexLoader().load_intel_hex(hex_file, bus)
        assert loaded == 3
        assert bus.dump(0x0100, 3) == bytes([0x3E, 0x42, 0x76])
        assert bus.peek(0x0010) == 0x00
        assert bus.get_and_clear_activity_log() == []

    # @intent:test_case_extended 拡張リニアアドレスが64K空間に折り返されることを検証します。
    def test_extended_linear_address_wraps(self, setup_bus):
        bus = setup_bus
        IntelHexLoader().load_lines([":020000040001F9", ":01001000AA45", ":00000001FF"], bus)
        assert bus.peek(0x0010) == 0xAA

    def test_ignores_blank_and_non_record_lines(self, setup_bus):
        bus = setup_bus
        loaded = IntelHexLoader().load_lines(["", "# header", ":030100003E427606 ; comment"], bus)
        assert loaded == 3

    # @intent:test_case_errors 不正なレコードが行番号付きの ValueError となることを検証します。
    @pytest.mark.parametrize("line, message", [
        (":030100003E427607", "Checksum mismatch on line 1"),
        (":0001", "Too short"),
        (":040100003E427606", "Data length mismatch"),
        (":00000006FA", "Unknown Intel HEX record type"),
        (":0G0100003E427606", "Error parsing Intel HEX line 1"),
    ])
    def test_invalid_records(self, setup_bus, line, message):
        with pytest.raises(ValueError, match=message):
            IntelHexLoader().load_lines([line], setup_bus)


class TestBinaryLoader:
    # @intent:test_case_binary バイナリイメージが開始アドレスから配置され、末尾で折り返すことを検証します。
    def test_load_binary(self, tmp_path):
        bus = MemoryBus()
        image = tmp_path / "image.bin"
        image.write_bytes(bytes([0x01, 0x02, 0x03]))
        assert BinaryLoader().load_binary(image, bus, 0xFFFF) == 3
        assert bus.peek(0xFFFF) == 0x01
        assert bus.dump(0x0000, 2) == bytes([0x02, 0x03])

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            BinaryLoader().load_binary(tmp_path / "missing.bin", MemoryBus())


class TestAssemblyLoader:
    # @intent:test_case_assembly アセンブル結果がロードされ、シンボルマップが返されることを検証します。
    def test_load_assembly(self, tmp_path):
        bus = MemoryBus()
        source = tmp_path / "program.asm"
        source.write_text("START: LD A,$AA\nLOOP: JR LOOP\n", encoding="utf-8")
        symbols = AssemblyLoader().load_assembly(source, bus, 0x0200)
        assert symbols == {"START": 0x0200, "LOOP": 0x0202}
        assert bus.dump(0x0200, 4) == bytes([0x3E, 0xAA, 0x18, 0xFE])

    def test_assembly_error_loads_nothing(self, tmp_path):
        bus = MemoryBus()
        source = tmp_path / "broken.asm"
        source.write_text("LD A,$12\nBOGUS\n", encoding="utf-8")
        with pytest.raises(AssemblyError) as excinfo:
            AssemblyLoader().load_assembly(source, bus)
        assert excinfo.value.line_number == 2
        assert bus.dump(0x0000, 2) == bytes(2)
