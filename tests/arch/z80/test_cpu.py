# tests/arch/z80/test_cpu.py
"""
z80_core_tracer.arch.z80.cpuモジュールの単体テスト。
Z80Cpuの基本的なフェッチ、デコード、実行サイクルを検証します。
"""
import pytest

from z80_core_tracer.common.errors import DecodeFaultError
from z80_core_tracer.core.cpu import DecodeFaultPolicy
from z80_core_tracer.transport.bus import MemoryBus, BusAccessType
from z80_core_tracer.arch.z80.cpu import Z80Cpu, RESET_STACK_POINTER
from z80_core_tracer.arch.z80.state import Z80CpuState, StateUpdate, FlagsUpdate

# @intent:test_suite Z80 CPUの初期化、リセット、命令サイクル、状態アクセスを検証します。

class TestZ80Cpu:
    """
    Z80Cpuの単体テスト。
    """

    @pytest.fixture
    def setup_z80_cpu(self):
        bus = MemoryBus()
        cpu = Z80Cpu(bus)
        cpu.reset()
        return cpu, bus

    # @intent:test_case_init 生成直後は全レジスタがゼロであることを検証します。
    def test_z80_cpu_init(self):
        cpu = Z80Cpu(MemoryBus())
        state = cpu.get_state()
        assert isinstance(state, Z80CpuState)
        assert state.pc == 0x0000
        assert state.sp == 0x0000

    # @intent:test_case_reset リセットで電源投入時の状態（SP=0xFFFF）に戻ることを検証します。
    def test_z80_cpu_reset(self, setup_z80_cpu):
        cpu, bus = setup_z80_cpu
        cpu.set_state(StateUpdate(a=0x12, pc=0x4000, halted=True, interrupts_enabled=True))
        bus.poke(0x1000, 0x77)
        cpu.reset()
        state = cpu.get_state()
        assert state.pc == 0x0000
        assert state.sp == RESET_STACK_POINTER
        assert state.a == 0
        assert state.halted is False
        assert state.interrupts_enabled is False
        assert bus.peek(0x1000) == 0x77 # メモリは保持される

    # @intent:test_case_step NOPの実行でPCと実行カウンタが進むことを検証します。
    def test_step_nop(self, setup_z80_cpu):
        cpu, bus = setup_z80_cpu
        snapshot = cpu.step()
        assert cpu.pc == 0x0001
        assert cpu.instruction_count == 1
        assert cpu.cycle_count == 4
        assert snapshot.operation.mnemonic == "NOP"
        assert len(snapshot.bus_activity) == 1
        assert snapshot.bus_activity[0].access_type == BusAccessType.READ

    # @intent:test_case_ld_a_n LD A,n が A をロードし、PCを2進めることを検証します。
    def test_step_ld_a_n(self, setup_z80_cpu):
        cpu, bus = setup_z80_cpu
        bus.load_program([0x3E, 0x42], 0x0000)
        snapshot = cpu.step()
        state = cpu.get_state()
        assert state.a == 0x42
        assert state.pc == 0x0002
        assert snapshot.operation.mnemonic == "LD A,n"
        assert snapshot.operation.operands == ["$42"]
        assert snapshot.metadata.symbol_info == "LD A,$42"

    # @intent:test_case_halt HALT以降はstepが何もしないことを検証します。
    def test_halt_stops_execution(self, setup_z80_cpu):
        cpu, bus = setup_z80_cpu
        bus.load_program([0x76], 0x0000)
        cpu.step()
        assert cpu.halted
        assert cpu.pc == 0x0001
        assert cpu.step() is None
        assert cpu.pc == 0x0001

    # @intent:test_case_get_set 取得した状態をそのまま設定しても状態が変化しないことを検証します。
    def test_get_set_state_identity(self, setup_z80_cpu):
        cpu, _ = setup_z80_cpu
        cpu.set_state(StateUpdate(a=0x12, b=0x34, ix=0xBEEF, flags=FlagsUpdate(c=True, s=True)))
        before = cpu.get_state()
        cpu.set_state(before)
        assert cpu.get_state() == before

    # @intent:test_case_set_state_partial 部分更新が他のレジスタを変更しないことを検証します。
    def test_set_state_partial(self, setup_z80_cpu):
        cpu, _ = setup_z80_cpu
        cpu.set_state(StateUpdate(a=0x10, b=0x20))
        cpu.set_state(StateUpdate(b=0x30))
        state = cpu.get_state()
        assert state.a == 0x10
        assert state.b == 0x30
        assert state.sp == RESET_STACK_POINTER

    def test_set_state_rejects_other_types(self, setup_z80_cpu):
        cpu, _ = setup_z80_cpu
        with pytest.raises(TypeError):
            cpu.set_state({"a": 1})

    # @intent:test_case_unknown_nop 未定義オペコード（ED 00）がNOP扱いで2バイト読み飛ばされることを検証します。
    def test_unknown_ed_opcode_nop_policy(self, setup_z80_cpu):
        cpu, bus = setup_z80_cpu
        bus.load_program([0xED, 0x00, 0x3E, 0x01], 0x0000)
        snapshot = cpu.step()
        assert snapshot.operation.fault
        assert cpu.pc == 0x0002
        assert cpu.decode_faults[0].opcode_bytes == (0xED, 0x00)
        cpu.step()
        assert cpu.get_state().a == 0x01

    # @intent:test_case_unknown_index 未定義のDD命令はプレフィックスのみを消費することを検証します。
    def test_unknown_index_opcode_consumes_prefix(self, setup_z80_cpu):
        cpu, bus = setup_z80_cpu
        bus.load_program([0xDD, 0x04], 0x0000) # DD 04 は未定義、04 は INC B
        cpu.step()
        assert cpu.pc == 0x0001
        cpu.step()
        assert cpu.get_state().b == 0x01

    def test_unknown_opcode_raise_policy(self):
        bus = MemoryBus()
        cpu = Z80Cpu(bus, decode_fault_policy=DecodeFaultPolicy.RAISE)
        cpu.reset()
        bus.load_program([0xED, 0xFF], 0x0000)
        before = cpu.get_state()
        with pytest.raises(DecodeFaultError):
            cpu.step()
        assert cpu.get_state() == before

    # @intent:test_case_register_map レジスタマップとフラグ状態の内容を検証します。
    def test_register_map_and_flags(self, setup_z80_cpu):
        cpu, _ = setup_z80_cpu
        cpu.set_state(StateUpdate(a=0x12, b=0x34, c=0x56, a_=0x9A, flags=FlagsUpdate(z=True, c=True)))
        registers = cpu.get_register_map()
        assert registers["A"] == 0x12
        assert registers["BC"] == 0x3456
        assert registers["AF"] == 0x1241
        assert registers["A'"] == 0x9A
        assert registers["SP"] == 0xFFFF
        assert cpu.get_flag_state() == {"S": False, "Z": True, "H": False, "PV": False, "N": False, "C": True}
        layout_names = [info.name for group in cpu.get_register_layout() for info in group.registers]
        assert set(layout_names) <= set(registers)
