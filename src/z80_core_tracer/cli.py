# z80_core_tracer/cli.py
"""
コマンドラインエントリポイント。

YAML構成ファイルからマシンを構築して実行し、停止理由とレジスタダンプを表示します。
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from z80_core_tracer.common.errors import Z80CoreTracerError
from z80_core_tracer.config.loader import ConfigLoader
from z80_core_tracer.config.builder import MachineBuilder
from z80_core_tracer.arch.z80.machine import Z80Machine
from z80_core_tracer.debugger.debugger import RunResult

# @intent:constant 上限指定なしで実行した場合の既定ステップ数（無限ループでホストが制御を失わないため）。
DEFAULT_MAX_STEPS = 1_000_000


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="z80-core-tracer",
        description="Run a Z80 program described by a YAML machine config and trace its execution",
    )
    parser.add_argument("config", type=Path, help="Path to the YAML machine configuration")
    parser.add_argument(
        "--max-steps",
        type=int,
        default=DEFAULT_MAX_STEPS,
        help=f"Stop after this many instructions (default: {DEFAULT_MAX_STEPS})",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Print the execution history (bounded by machine.history_size)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    return parser


# @intent:responsibility レジスタとフラグの状態を整形して出力します。
def print_registers(machine: Z80Machine, out: TextIO) -> None:
    registers = machine.register_map()
    main = " ".join(f"{name}={registers[name]:04X}" for name in ("AF", "BC", "DE", "HL", "IX", "IY", "SP", "PC"))
    shadow = " ".join(f"{name}={registers[name]:04X}" for name in ("AF'", "BC'", "DE'", "HL'"))
    flags = "".join(name[0] if value else "-" for name, value in machine.flag_state().items())
    print(main, file=out)
    print(f"{shadow} I={registers['I']:02X} R={registers['R']:02X} IM={registers['IM']}", file=out)
    print(f"Flags: {flags}  Cycles: {machine.cycle_count}  Instructions: {machine.instruction_count}", file=out)


def print_trace(machine: Z80Machine, out: TextIO) -> None:
    for snapshot in machine.history:
        meta = snapshot.metadata
        print(f"{meta.address:04X}  {snapshot.operation.opcode_hex:<8} {meta.symbol_info}", file=out)


def print_result(result: RunResult, machine: Z80Machine, out: TextIO) -> None:
    print(f"Stopped: {result.reason.value} at {result.address:04X} after {result.steps} steps", file=out)
    for fault in machine.decode_faults:
        print(f"Decode fault: {fault.describe()}", file=out)
    omitted = machine.decode_fault_count - len(machine.decode_faults)
    if omitted > 0:
        print(f"({omitted} earlier decode faults not shown)", file=out)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    if args.max_steps < 0:
        parser.error("--max-steps must be non-negative")
    if not args.config.exists():
        parser.error(f"Config file not found: {args.config}")

    try:
        config = ConfigLoader().load_from_file(args.config)
        machine = MachineBuilder().build(config)
        result = machine.run(max_steps=args.max_steps)
    except Z80CoreTracerError as exc:
        parser.exit(1, f"z80-core-tracer: {exc}\n")

    if args.trace:
        print_trace(machine, sys.stdout)
    print_result(result, machine, sys.stdout)
    print_registers(machine, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
