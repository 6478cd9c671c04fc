# z80_core_tracer/config/builder.py
"""
マシン構成（MachineConfig）から、プログラムとブレークポイントが設定済みの Z80Machine を構築します。
"""
import logging
from typing import Any, Dict

from z80_core_tracer.common.errors import AssemblyError, ConfigError
from z80_core_tracer.core.cpu import DecodeFaultPolicy
from z80_core_tracer.arch.z80.machine import Z80Machine
from z80_core_tracer.arch.z80.state import StateUpdate
from z80_core_tracer.loader.loader import IntelHexLoader, BinaryLoader, AssemblyLoader
from .models import MachineConfig, CpuInitialState, ProgramSource

logger = logging.getLogger(__name__)


# @intent:responsibility 構成に基づいてマシンを生成し、プログラムのロードと初期状態の適用を行います。
class MachineBuilder:
    def build(self, config: MachineConfig) -> Z80Machine:
        machine = Z80Machine(
            history_size=config.machine.history_size,
            decode_fault_policy=DecodeFaultPolicy(config.machine.decode_fault_policy),
            max_decode_faults=config.machine.max_decode_faults,
        )
        if config.initial_state.reset:
            machine.reset()

        for program in config.programs:
            self.load_program(machine, program)

        # 初期状態の適用（プログラムのロード後に行い、PCなどの上書きを優先する）
        self.apply_initial_state(machine, config.initial_state)

        for address in config.breakpoints:
            machine.set_breakpoint(address)

        logger.info("Built machine: %d program(s), %d breakpoint(s)", len(config.programs), len(config.breakpoints))
        return machine

    def load_program(self, machine: Z80Machine, program: ProgramSource) -> None:
        try:
            if program.format == "assembly":
                symbols = AssemblyLoader().load_assembly(program.path, machine.bus, program.start)
                machine.set_symbol_map({**machine.cpu.get_symbol_map(), **symbols})
            elif program.format == "intel_hex":
                IntelHexLoader().load_intel_hex(program.path, machine.bus)
            elif program.format == "binary":
                BinaryLoader().load_binary(program.path, machine.bus, program.start)
            else:
                raise ConfigError(f"Unsupported program format: {program.format}")
        except (AssemblyError, ConfigError):
            raise
        except OSError as e:
            raise ConfigError(f"Cannot load program {program.path}: {e}") from e
        except ValueError as e:
            raise ConfigError(f"Invalid program {program.path}: {e}") from e

    # @intent:responsibility Configで定義された初期状態をCPUに適用します。
    # @intent:rationale 部分更新は StateUpdate を経由させ、レジスタ名と値の型を検証します。
    def apply_initial_state(self, machine: Z80Machine, config_state: CpuInitialState) -> None:
        values: Dict[str, Any] = dict(config_state.registers)
        if config_state.pc is not None:
            values["pc"] = config_state.pc
        if config_state.sp is not None:
            values["sp"] = config_state.sp
        if config_state.flags:
            values["flags"] = dict(config_state.flags)
        if not values:
            return
        try:
            update = StateUpdate.from_mapping(values)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid initial_state: {e}") from e
        machine.set_state(update)
