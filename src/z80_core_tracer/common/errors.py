"""
例外階層の定義。

メモリ・レジスタアクセスは例外を送出しない全域関数として設計されているため、
ここに定義される例外はデコードフォルト、アセンブル時の範囲エラー、設定エラーのみです。
"""
from typing import Optional, Sequence


class Z80CoreTracerError(Exception):
    """本パッケージが送出する全ての例外の基底クラス。"""


# @intent:responsibility 未定義オペコードに遭遇したことを通知します（DecodeFaultPolicy.RAISE 時のみ）。
class DecodeFaultError(Z80CoreTracerError):
    def __init__(self, address: int, opcode_bytes: Sequence[int]):
        self.address = address & 0xFFFF
        self.opcode_bytes = tuple(opcode_bytes)
        hex_bytes = " ".join(f"{b:02X}" for b in self.opcode_bytes)
        super().__init__(f"Unknown opcode {hex_bytes} at {self.address:#06x}")


# @intent:responsibility アセンブル時のエラー（未知の命令、範囲外の値、相対ジャンプ範囲外）を行番号・アドレス付きで表します。
# @intent:rationale 既存コードが ValueError を捕捉している箇所と互換にするため ValueError を継承します。
class AssemblyError(Z80CoreTracerError, ValueError):
    def __init__(self, message: str, line_number: Optional[int] = None, address: Optional[int] = None):
        self.message = message
        self.line_number = line_number
        self.address = address
        location = []
        if line_number is not None:
            location.append(f"line {line_number}")
        if address is not None:
            location.append(f"address {address:#06x}")
        suffix = f" ({', '.join(location)})" if location else ""
        super().__init__(f"{message}{suffix}")


class ConfigError(Z80CoreTracerError, ValueError):
    """マシン構成ファイルの内容が不正な場合に送出されます。"""
