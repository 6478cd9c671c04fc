"""
Z80逆アセンブラモジュール。

メモリ上のバイナリデータを解析し、Z80アセンブリ言語のニーモニック形式に変換します。
デコードには実行エンジンと同じ正準オペコード表を使用します。
"""
from typing import List, Tuple

from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.arch.z80.instructions import decode_opcode

# @intent:responsibility 指定されたメモリ範囲のバイナリデータを解析し、アドレスとニーモニックのリストを返します。
# @intent:post-condition バスアクティビティログは変化しません（peekによる読み出しのみ）。
def disassemble(bus: MemoryBus, start_addr: int, length: int) -> List[Tuple[int, str, str]]:
    """
    メモリ上のデータを読み取り、(アドレス, 16進ダンプ, ニーモニック) のタプルのリストを返します。
    アドレスは64K空間内でラップします。未定義のオペコードは "UNKNOWN" として表示されます。
    """
    result = []
    offset = 0

    while offset < length:
        current_addr = (start_addr + offset) & 0xFFFF
        # ログを汚さないためにpeekを使用
        operation = decode_opcode(bus.peek(current_addr), bus, current_addr, read=bus.peek)

        # 16進ダンプ文字列の生成 (プレフィックス + オペコード + オペランド)
        raw = bus.dump(current_addr, operation.length)
        hex_dump = " ".join(f"{b:02X}" for b in raw)

        result.append((current_addr, hex_dump, operation.display_text()))

        # 次の命令へ
        offset += operation.length

    return result
