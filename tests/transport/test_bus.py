# tests/transport/test_bus.py
"""
z80_core_tracer.transport.busモジュールの単体テスト。
"""
import pytest

from z80_core_tracer.transport.bus import MemoryBus, BusAccess, BusAccessType

# @intent:test_suite 64Kメモリバスの読み書き、折り返し、アクティビティログを検証します。

class TestMemoryBus:
    """
    MemoryBusの単体テスト。
    """
    @pytest.fixture
    def setup_bus(self):
        return MemoryBus()

    # @intent:test_case_init 生成直後のメモリが全てゼロであることを検証します。
    def test_memory_is_zeroed(self, setup_bus):
        bus = setup_bus
        assert bus.dump(0x0000, 0x10000) == bytes(0x10000)

    # @intent:test_case_rw 書き込んだ値が 256 の剰余で読み出せることを検証します。
    @pytest.mark.parametrize("address,value", [
        (0x0000, 0x00), (0x1234, 0xAB), (0xFFFF, 0xFF), (0x8000, 0x1FF), (0x0001, -1),
    ])
    def test_byte_round_trip(self, setup_bus, address, value):
        bus = setup_bus
        bus.write_byte(address, value)
        assert bus.read_byte(address) == value % 256

    # @intent:test_case_wrap アドレスが 65536 を法として折り返されることを検証します。
    def test_address_wraparound(self, setup_bus):
        bus = setup_bus
        bus.write_byte(0x10005, 0x42)
        assert bus.read_byte(0x0005) == 0x42
        bus.write_byte(-1, 0x99)
        assert bus.read_byte(0xFFFF) == 0x99

    # @intent:test_case_word ワードの読み書きがリトルエンディアンで、0xFFFFで折り返すことを検証します。
    @pytest.mark.parametrize("address", [0x0000, 0x4000, 0xFFFE, 0xFFFF])
    def test_word_round_trip(self, setup_bus, address):
        bus = setup_bus
        bus.write_word(address, 0x12345)
        assert bus.read_word(address) == 0x2345

    def test_word_layout_at_top_of_memory(self, setup_bus):
        bus = setup_bus
        bus.write_word(0xFFFF, 0xBEEF)
        assert bus.peek(0xFFFF) == 0xEF # 下位バイト
        assert bus.peek(0x0000) == 0xBE # 上位バイトは0x0000へ折り返す

    # @intent:test_case_load プログラムのロードが連続配置され、末尾で折り返すことを検証します。
    def test_load_program_wraps(self, setup_bus):
        bus = setup_bus
        count = bus.load_program([0x11, 0x22, 0x33], start_address=0xFFFE)
        assert count == 3
        assert bus.peek(0xFFFE) == 0x11
        assert bus.peek(0xFFFF) == 0x22
        assert bus.peek(0x0000) == 0x33
        assert bus.get_and_clear_activity_log() == [] # ロードはログに残らない

    # @intent:test_case_log CPUから見える読み書きが、書き込み前の値とともに記録されることを検証します。
    def test_activity_log(self, setup_bus):
        bus = setup_bus
        bus.poke(0x2000, 0x55)
        bus.write_byte(0x2000, 0x66)
        bus.read_byte(0x2000)
        log = bus.get_and_clear_activity_log()
        assert log == [
            BusAccess(0x2000, 0x66, BusAccessType.WRITE, previous_data=0x55),
            BusAccess(0x2000, 0x66, BusAccessType.READ),
        ]
        assert bus.get_and_clear_activity_log() == []

    # @intent:test_case_peek_poke peek/pokeはログを記録しないことを検証します。
    def test_peek_poke_not_logged(self, setup_bus):
        bus = setup_bus
        bus.poke(0x10, 0x1FF)
        assert bus.peek(0x10) == 0xFF
        assert bus.get_and_clear_activity_log() == []

    # @intent:test_case_dump ダンプが折り返しを含むコピーを返すことを検証します。
    def test_dump_wraps_and_copies(self, setup_bus):
        bus = setup_bus
        bus.load_program([1, 2, 3, 4], 0xFFFE)
        data = bus.dump(0xFFFE, 4)
        assert data == bytes([1, 2, 3, 4])
        assert isinstance(data, bytes)

    def test_clear(self, setup_bus):
        bus = setup_bus
        bus.write_byte(0x100, 0x12)
        bus.clear()
        assert bus.peek(0x100) == 0
        assert bus.get_and_clear_activity_log() == []
