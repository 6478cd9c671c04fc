# z80_core_tracer/config/loader.py
"""
YAML形式のマシン構成ファイルを読み込み、MachineConfig に変換します。
"""
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from z80_core_tracer.common.errors import ConfigError
from .models import MachineConfig, MachineSettings, CpuInitialState, ProgramSource, PROGRAM_FORMATS

_TOP_LEVEL_KEYS = {"machine", "initial_state", "programs", "breakpoints"}


class ConfigLoader:
    # @intent:responsibility 構成ファイルを読み込みます。プログラムの相対パスは構成ファイルの場所を基準に解決します。
    def load_from_file(self, path: Union[str, Path]) -> MachineConfig:
        path = Path(path)
        try:
            with open(path, 'r', encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        return self._parse_config(data, base_dir=path.parent)

    def load_from_string(self, text: str, base_dir: Optional[Path] = None) -> MachineConfig:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}") from e
        return self._parse_config(data, base_dir=base_dir or Path.cwd())

    def _parse_config(self, data: Any, base_dir: Path) -> MachineConfig:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping")
        unknown = set(data) - _TOP_LEVEL_KEYS
        if unknown:
            raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

        # Parse Machine Settings
        machine_data = self._mapping(data.get("machine"), "machine")
        policy = str(machine_data.get("decode_fault_policy", "nop")).lower()
        if policy not in ("nop", "raise"):
            raise ConfigError(f"Invalid decode_fault_policy: {policy}")
        history_size = self._parse_int(machine_data.get("history_size", 100), "machine.history_size")
        if history_size < 0:
            raise ConfigError("machine.history_size must be non-negative")
        max_decode_faults = self._parse_int(machine_data.get("max_decode_faults", 100), "machine.max_decode_faults")
        if max_decode_faults < 0:
            raise ConfigError("machine.max_decode_faults must be non-negative")
        machine = MachineSettings(history_size=history_size, decode_fault_policy=policy,
                                  max_decode_faults=max_decode_faults)

        # Parse Initial State
        initial_state_data = self._mapping(data.get("initial_state"), "initial_state")
        registers = {
            str(name): self._parse_int(value, f"initial_state.registers.{name}")
            for name, value in self._mapping(initial_state_data.get("registers"), "initial_state.registers").items()
        }
        flags = {}
        for name, value in self._mapping(initial_state_data.get("flags"), "initial_state.flags").items():
            if not isinstance(value, bool):
                raise ConfigError(f"Flag '{name}' must be true or false")
            flags[str(name)] = value
        initial_state = CpuInitialState(
            reset=bool(initial_state_data.get("reset", True)),
            pc=self._optional_int(initial_state_data.get("pc"), "initial_state.pc"),
            sp=self._optional_int(initial_state_data.get("sp"), "initial_state.sp"),
            registers=registers,
            flags=flags,
        )

        # Parse Programs
        programs = []
        for index, program_data in enumerate(data.get("programs") or []):
            program_data = self._mapping(program_data, f"programs[{index}]")
            if "path" not in program_data:
                raise ConfigError(f"programs[{index}] requires a path")
            fmt = str(program_data.get("format", "assembly")).lower()
            if fmt not in PROGRAM_FORMATS:
                raise ConfigError(f"programs[{index}]: unsupported format '{fmt}'")
            path = Path(program_data["path"])
            if not path.is_absolute():
                path = base_dir / path
            programs.append(ProgramSource(
                path=path,
                format=fmt,
                start=self._parse_int(program_data.get("start", 0), f"programs[{index}].start"),
            ))

        breakpoints = [self._parse_int(value, "breakpoints") for value in data.get("breakpoints") or []]

        return MachineConfig(
            machine=machine,
            initial_state=initial_state,
            programs=programs,
            breakpoints=breakpoints,
        )

    def _mapping(self, value: Any, name: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ConfigError(f"'{name}' must be a mapping")
        return value

    def _optional_int(self, value: Any, name: str) -> Optional[int]:
        if value is None:
            return None
        return self._parse_int(value, name)

    # @intent:utility_function 整数、または "0x"/"$"/"h" 表記の16進文字列を整数に変換します。
    def _parse_int(self, value: Any, name: str = "value") -> int:
        if isinstance(value, bool):
            raise ConfigError(f"Invalid integer for {name}: {value}")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                if text.lower().startswith("0x"):
                    return int(text, 16)
                if text.startswith("$"):
                    return int(text[1:], 16)
                if text.lower().endswith("h"):
                    return int(text[:-1], 16)
                return int(text)
            except ValueError:
                pass
        raise ConfigError(f"Invalid integer for {name}: {value!r}")
