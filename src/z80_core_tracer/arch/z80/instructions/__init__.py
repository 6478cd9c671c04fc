"""
Z80命令セット実装パッケージ。

正準オペコード表（maps）に基づいて命令をデコードし、実行関数へディスパッチします。
"""
from typing import Callable, List, Optional, Tuple

from z80_core_tracer.transport.bus import MemoryBus
from z80_core_tracer.core.snapshot import Operation
from z80_core_tracer.arch.z80.state import Z80CpuState
from .base import InstructionDef, PLACEHOLDER_SIZES, split_template, signed_byte
from .maps import BASE_TABLE, CB_TABLE, ED_TABLE, INDEX_TABLE, INDEX_CB_TABLE, PREFIX_TABLES

__all__ = [
    "InstructionDef", "BASE_TABLE", "CB_TABLE", "ED_TABLE", "INDEX_TABLE", "INDEX_CB_TABLE", "PREFIX_TABLES",
    "lookup_instruction", "decode_opcode", "execute_instruction", "render_template",
]

ByteReader = Callable[[int], int]

# @intent:constant 未定義オペコードの参考クロック数（NOPと同じ扱い）。
UNKNOWN_CYCLES = 4


# @intent:constant インデックスレジスタのビット操作命令（DD CB / FD CB）のディスパッチキー上位。
INDEX_CB_PREFIXES = (0xDDCB, 0xFDCB)


# @intent:responsibility ディスパッチキー（(prefix << 8) | opcode）から命令定義を引きます。
# DD CB d op / FD CB d op のキーは (prefix << 16) | (0xCB << 8) | op です。
def lookup_instruction(key: int) -> Optional[InstructionDef]:
    if key > 0xFFFF:
        return INDEX_CB_TABLE[key & 0xFF] if (key >> 8) in INDEX_CB_PREFIXES else None
    if key > 0xFF:
        table = PREFIX_TABLES.get(key >> 8)
        return table[key & 0xFF] if table is not None else None
    return BASE_TABLE[key]


# @intent:utility_function インデックス命令のテンプレートを対象レジスタ名に合わせます。
def _index_template(template: str, prefix: Optional[int]) -> str:
    if prefix == 0xFD:
        return template.replace("IX", "IY")
    return template


# @intent:responsibility 命令テンプレートのプレースホルダを実際のオペランド値で置き換えます。
# @intent:pre-condition operand_bytes はテンプレートに現れる順に並んでいる必要があります。
# @intent:post-condition (整形済みの命令文字列, 置換されたオペランド表記のリスト) を返します。
def render_template(template: str, operand_bytes: List[int], address: int, length: int) -> Tuple[str, List[str]]:
    word, tokens = split_template(template)
    values = iter(operand_bytes)
    rendered: List[str] = []
    substituted: List[str] = []
    for token in tokens:
        if token not in PLACEHOLDER_SIZES:
            rendered.append(token)
            continue
        if token in ("nn", "(nn)"):
            low = next(values)
            high = next(values)
            text = f"${(high << 8) | low:04X}"
        elif token == "e":
            target = (address + length + signed_byte(next(values))) & 0xFFFF
            text = f"${target:04X}"
        elif token.endswith("+d)"):
            displacement = signed_byte(next(values))
            sign = "-" if displacement < 0 else "+"
            text = f"{token[1:3]}{sign}${abs(displacement):02X}"
        else:
            text = f"${next(values):02X}"
        if token.startswith("("):
            text = f"({text})"
        rendered.append(text)
        substituted.append(text)
    if not rendered:
        return word, substituted
    return f"{word} {','.join(rendered)}", substituted


# @intent:responsibility 未定義オペコードを表すフォルト付きのOperationを生成します。
# @intent:rationale EDページの未定義命令は2バイトを消費し、DD/FDの未定義命令はプレフィックス1バイトのみを消費します。
#                  DD CB / FD CB の未定義命令は変位と命令コードを含む4バイトを消費します。
def _unknown_operation(raw: List[int]) -> Operation:
    if len(raw) == 4:
        length = 4
        key = (raw[0] << 16) | (raw[1] << 8) | raw[3]
    elif len(raw) == 2:
        length = 2 if raw[0] == 0xED else 1
        key = (raw[0] << 8) | raw[1]
    else:
        length = 1
        key = raw[0]
    operands = [f"${b:02X}" for b in raw]
    return Operation(
        opcode_hex="".join(f"{b:02X}" for b in raw),
        mnemonic="UNKNOWN",
        operands=operands,
        cycle_count=UNKNOWN_CYCLES,
        length=length,
        opcode=key,
        text=f"UNKNOWN {','.join(operands)}",
        fault=True,
    )


def _read_operands(read: ByteReader, pc: int, opcode_len: int, length: int) -> List[int]:
    return [read((pc + opcode_len + i) & 0xFFFF) for i in range(length - opcode_len)]


# @intent:responsibility DD CB d op / FD CB d op をデコードします。変位 d が唯一のオペランドです。
def _decode_index_cb(prefix: int, read: ByteReader, pc: int) -> Operation:
    displacement = read((pc + 2) & 0xFFFF)
    sub = read((pc + 3) & 0xFFFF)
    definition = INDEX_CB_TABLE[sub]
    if definition is None:
        return _unknown_operation([prefix, 0xCB, displacement, sub])
    key = (prefix << 16) | (0xCB << 8) | sub
    template = _index_template(definition.template, prefix)
    text, operands = render_template(template, [displacement], pc, definition.length)
    return Operation(
        opcode_hex=f"{key:06X}",
        mnemonic=template,
        operands=operands,
        operand_bytes=[displacement],
        cycle_count=definition.cycles,
        length=definition.length,
        opcode=key,
        text=text,
    )


# @intent:responsibility 与えられたオペコードをZ80の命令としてデコードします。
# @intent:pre-condition `pc`はデコードするオペコードの先頭アドレスを指している必要があります。
def decode_opcode(opcode: int, bus: MemoryBus, pc: int, read: Optional[ByteReader] = None) -> Operation:
    """
    Z80のオペコードをデコードし、Operationオブジェクトを返します。
    プレフィックス（CB/ED/DD/FD）の場合は2バイト目を読み込みます。
    DD CB / FD CB の場合は変位 d の後の4バイト目が命令コードです。
    `read` を指定すると、バスアクティビティを記録しない読み出し（peek）でデコードできます。
    未知のオペコードの場合は fault=True の "UNKNOWN" を返します。
    """
    read = read or bus.read_byte
    opcode &= 0xFF
    table = PREFIX_TABLES.get(opcode)
    if table is None:
        prefix = None
        key = opcode
        definition = BASE_TABLE[opcode]
        if definition is None:
            return _unknown_operation([opcode])
        operand_bytes = _read_operands(read, pc, 1, definition.length)
        opcode_hex = f"{key:02X}"
    else:
        prefix = opcode
        second = read((pc + 1) & 0xFFFF)
        if opcode in (0xDD, 0xFD) and second == 0xCB:
            return _decode_index_cb(opcode, read, pc)
        key = (opcode << 8) | second
        definition = table[second]
        if definition is None:
            return _unknown_operation([opcode, second])
        operand_bytes = _read_operands(read, pc, 2, definition.length)
        opcode_hex = f"{key:04X}"

    template = _index_template(definition.template, prefix)
    text, operands = render_template(template, operand_bytes, pc, definition.length)
    return Operation(
        opcode_hex=opcode_hex,
        mnemonic=template,
        operands=operands,
        operand_bytes=operand_bytes,
        cycle_count=definition.cycles,
        length=definition.length,
        opcode=key,
        text=text,
    )


# @intent:responsibility デコードされたZ80命令を実行し、CPUの状態を変更します。
# @intent:pre-condition `operation`は有効なOperationオブジェクトである必要があります。
def execute_instruction(operation: Operation, state: Z80CpuState, bus: MemoryBus) -> None:
    """
    デコードされたZ80命令を実行し、CPUの状態を変更します。
    未定義オペコード（fault）は何もしません。
    """
    if operation.fault:
        return
    definition = lookup_instruction(operation.opcode)
    if definition is not None:
        definition.execute(state, bus, operation)
