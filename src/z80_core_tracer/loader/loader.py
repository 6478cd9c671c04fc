# z80_core_tracer/loader/loader.py
"""
コードローダーモジュール。
Intel HEX、生バイナリ、アセンブリソースのロードをサポートします。
いずれのローダーも MemoryBus.load_program を通してメモリに配置します。
"""
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple, Union

from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.common.types import SymbolMap
from z80_core_tracer.arch.z80.assembler import Z80Assembler

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Intel HEX record types
DATA_RECORD = 0x00
EOF_RECORD = 0x01
EXTENDED_SEGMENT_ADDRESS = 0x02
START_SEGMENT_ADDRESS = 0x03
EXTENDED_LINEAR_ADDRESS = 0x04
START_LINEAR_ADDRESS = 0x05


class IntelHexLoader:
    """
    Intel HEX形式のファイルを解析し、データをバスにロードするローダー。
    拡張アドレスを含む32ビットアドレスは64K空間に折り返して配置します。
    """
    def load_intel_hex(self, file_path: PathLike, bus: MemoryBus) -> int:
        """ファイルを読み込み、ロードしたバイト数を返します。"""
        with open(file_path, 'r') as f:
            return self.load_lines(f, bus)

    def load_lines(self, lines: Iterable[str], bus: MemoryBus) -> int:
        loaded = 0
        for address, data in self.parse_records(lines):
            loaded += bus.load_program(data, address & 0xFFFF)
        logger.info("Loaded %d bytes from Intel HEX", loaded)
        return loaded

    # @intent:responsibility データレコードを (絶対アドレス, バイト列) として順に返します。
    # @intent:pre-condition チェックサム不一致や不明なレコードタイプは ValueError となります。
    def parse_records(self, lines: Iterable[str]) -> Iterator[Tuple[int, bytes]]:
        base_address = 0x0000

        for line_num, line in enumerate(lines, 1):
            line = line.strip()
            if not line or not line.startswith(':'):
                continue

            comment_start = line.find(';')
            if comment_start != -1:
                line = line[:comment_start].strip()

            if len(line) < 11:
                raise ValueError(f"Invalid Intel HEX record format on line {line_num}: Too short - {line}")

            try:
                raw = bytes.fromhex(line[1:])
            except ValueError as e:
                raise ValueError(f"Error parsing Intel HEX line {line_num}: {line} - {e}") from e

            data_length = raw[0]
            address_field = (raw[1] << 8) | raw[2]
            record_type = raw[3]
            data = raw[4:-1]
            checksum_field = raw[-1]

            if len(data) != data_length:
                raise ValueError(f"Data length mismatch on line {line_num}")

            calculated_checksum = (-sum(raw[:-1])) & 0xFF
            if calculated_checksum != checksum_field:
                raise ValueError(
                    f"Checksum mismatch on line {line_num}: "
                    f"Calculated {calculated_checksum:02X}, Expected {checksum_field:02X}"
                )

            if record_type == DATA_RECORD:
                yield base_address + address_field, data
            elif record_type == EOF_RECORD:
                return
            elif record_type == EXTENDED_LINEAR_ADDRESS:
                base_address = int.from_bytes(data, "big") << 16
            elif record_type == EXTENDED_SEGMENT_ADDRESS:
                base_address = int.from_bytes(data, "big") << 4
            elif record_type in (START_SEGMENT_ADDRESS, START_LINEAR_ADDRESS):
                pass
            else:
                raise ValueError(f"Unknown Intel HEX record type {record_type:02X} on line {line_num}")


class BinaryLoader:
    """
    生のバイナリイメージを指定アドレスから配置するローダー。
    """
    def load_binary(self, file_path: PathLike, bus: MemoryBus, start_address: int = 0) -> int:
        data = Path(file_path).read_bytes()
        loaded = bus.load_program(data, start_address)
        logger.info("Loaded %d bytes from %s at %#06x", loaded, file_path, start_address & 0xFFFF)
        return loaded


class AssemblyLoader:
    """
    アセンブリソースコードをアセンブルし、シンボル情報を抽出してバスにロードするローダー。
    """
    def load_assembly(self, file_path: PathLike, bus: MemoryBus, start_address: int = 0) -> SymbolMap:
        with open(file_path, 'r', encoding="utf-8") as f:
            lines: List[str] = f.read().splitlines()

        result = Z80Assembler(origin=start_address).assemble(lines)
        # エラーがあれば1バイトもロードしない
        result.raise_for_errors()

        for line in result.lines:
            bus.load_program(line.data, line.address)

        logger.info("Assembled %s: %d lines, %d symbols", file_path, len(result.lines), len(result.symbols))
        return result.symbols
