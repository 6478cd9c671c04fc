# z80_core_tracer/arch/z80/assembler.py
"""
Z80用の2パスアセンブラ。

命令のエンコードはデコーダと同じ正準オペコード表（instructions.maps）から逆引きして行うため、
アセンブラとデコーダの命令表が食い違うことはありません。
AssemblyLoader および Z80Machine.assemble_and_load から利用されます。
"""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple, Union

from z80_core_tracer.common.errors import AssemblyError
from z80_core_tracer.common.types import SymbolMap
from z80_core_tracer.arch.z80.instructions import BASE_TABLE, CB_TABLE, ED_TABLE, INDEX_TABLE, INDEX_CB_TABLE
from z80_core_tracer.arch.z80.instructions.base import InstructionDef, PLACEHOLDER_SIZES, split_template

_LABEL_PATTERN = re.compile(r"^\s*([A-Za-z_.][\w.]*):")
_SYMBOL_PATTERN = re.compile(r"^[A-Za-z_.][\w.]*$")
_INDEX_PATTERN = re.compile(r"^\((IX|IY)\s*([+-].*)?\)$", re.IGNORECASE)
_NUMERIC_LITERAL = re.compile(r"^([0-9]+|[0-9A-F]+H)$")

_DIRECTIVES = ("ORG", "EQU", "DB", "DEFB", "DW", "DEFW", "DS", "DEFS", "END")


# @intent:data_structure 正準表の1命令を、アセンブル用のオペコードバイト列とオペランドトークンに展開したもの。
class _Encoding(NamedTuple):
    tokens: List[str]
    opcode_bytes: List[int]
    definition: InstructionDef
    trailing_bytes: Tuple[int, ...] = ()  # オペランドの後に置くバイト（DD CB d op の op）


# @intent:data_structure 1行分のアセンブル結果。
@dataclass(frozen=True)
class AssembledLine:
    line_number: int
    address: int
    data: bytes
    source: str


# @intent:responsibility アセンブル結果（シンボル、行ごとのバイト列、収集されたエラー）を保持します。
@dataclass
class AssemblyResult:
    symbols: SymbolMap = field(default_factory=dict)
    lines: List[AssembledLine] = field(default_factory=list)
    errors: List[AssemblyError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    # @intent:responsibility (アドレス, バイト値) の組を出力順に列挙します。アドレスは64K空間でラップします。
    def iter_bytes(self) -> Iterator[Tuple[int, int]]:
        for line in self.lines:
            for offset, value in enumerate(line.data):
                yield (line.address + offset) & 0xFFFF, value

    def binary(self) -> List[Tuple[int, int]]:
        return list(self.iter_bytes())

    # @intent:responsibility エラーが1件でもあれば最初のエラーを送出します。
    def raise_for_errors(self) -> None:
        if self.errors:
            raise self.errors[0]


# @intent:utility_function 正準表の全エントリをニーモニックごとのエンコード候補一覧に展開します。
# @intent:rationale 候補はプレフィックスなし、CB、ED、DD、FD の順に並ぶため、
#                  同じ表記に複数のエンコードがある場合（LD HL,(nn) など）は短い方が選ばれます。
def _build_encoding_index() -> Dict[str, List[_Encoding]]:
    index: Dict[str, List[_Encoding]] = {}

    def add(definition: Optional[InstructionDef], opcode_bytes: List[int], index_name: Optional[str] = None,
            trailing_bytes: Tuple[int, ...] = ()) -> None:
        if definition is None:
            return
        template = definition.template
        if index_name is not None:
            template = template.replace("IX", index_name)
        word, tokens = split_template(template)
        index.setdefault(word, []).append(_Encoding(tokens, opcode_bytes, definition, trailing_bytes))

    for opcode, definition in enumerate(BASE_TABLE):
        add(definition, [opcode])
    for opcode, definition in enumerate(CB_TABLE):
        add(definition, [0xCB, opcode])
    for opcode, definition in enumerate(ED_TABLE):
        add(definition, [0xED, opcode])
    for prefix, index_name in ((0xDD, "IX"), (0xFD, "IY")):
        for opcode, definition in enumerate(INDEX_TABLE):
            add(definition, [prefix, opcode], index_name)
        for opcode, definition in enumerate(INDEX_CB_TABLE):
            add(definition, [prefix, 0xCB], index_name, (opcode,))
    return index


ENCODINGS: Dict[str, List[_Encoding]] = _build_encoding_index()


# @intent:data_structure ソース上の1オペランドを分類したもの。
class _Operand(NamedTuple):
    text: str              # 大文字化・空白除去したテキスト（レジスタ名の照合用）
    shape: str             # "imm", "(imm)", "(IX+d)", "(IY+d)", "reg"
    expr: Optional[str]    # 数値式（shapeが値を伴う場合）


# @intent:responsibility Z80用のアセンブラ実装。
class Z80Assembler:
    """
    アセンブリソースを2パスで処理し、AssemblyResult を返すアセンブラ。
    1パス目でラベルのアドレスと各行の命令長を確定し、2パス目でバイト列を生成します。
    エラーは行番号とアドレス付きで収集され、処理は最後まで継続します。
    """
    REGISTER_TOKENS = frozenset({
        "A", "B", "C", "D", "E", "H", "L", "I", "R",
        "AF", "AF'", "BC", "DE", "HL", "SP", "IX", "IY",
        "(HL)", "(BC)", "(DE)", "(SP)", "(IX)", "(IY)",
        "NZ", "Z", "NC", "PO", "PE", "P", "M",
    })

    def __init__(self, origin: int = 0):
        self._origin = origin & 0xFFFF

    # @intent:responsibility アセンブリソース（文字列または行のリスト）をアセンブルします。
    def assemble(self, source: Union[str, Iterable[str]]) -> AssemblyResult:
        lines = source.splitlines() if isinstance(source, str) else list(source)
        result = AssemblyResult()
        statements = self._first_pass(lines, result)
        self._second_pass(statements, result)
        return result

    # --- Parsing ---

    def _parse_line(self, line: str) -> Tuple[Optional[str], Optional[str], str]:
        """(ラベル, ニーモニック, オペランド文字列) を返します。"""
        line = _strip_comment(line).strip()
        if not line:
            return None, None, ""

        label = None
        match = _LABEL_PATTERN.match(line)
        if match:
            label = match.group(1)
            line = line[match.end():].strip()
        else:
            # "NAME EQU value" 形式（コロンなしのラベル）
            parts = line.split(None, 2)
            if len(parts) >= 2 and parts[1].upper() == "EQU":
                label = parts[0]
                line = " ".join(parts[1:])

        if not line:
            return label, None, ""

        parts = re.split(r'\s+', line, maxsplit=1)
        mnemonic = parts[0].upper()
        operands = parts[1].strip() if len(parts) > 1 else ""
        return label, mnemonic, operands

    # @intent:responsibility 数値式を評価します。項は + / - で連結できます。
    # @intent:post-condition strict=False の場合、未定義シンボルを含む式は None を返します。
    def _parse_val(self, val_str: str, symbol_map: SymbolMap, address: int = 0,
                   strict: bool = True) -> Optional[int]:
        text = val_str.strip()
        if not text:
            raise ValueError("Missing value")
        if len(text) == 3 and text[0] == text[2] and text[0] in "'\"":
            return ord(text[1])

        total = 0
        sign = 1
        expect_term = True
        for token in re.findall(r"'[^']'|\"[^\"]\"|[+-]|[^+\-]+", text):
            token = token.strip()
            if not token:
                continue
            if token in "+-" and expect_term:
                sign = -sign if token == "-" else sign
                continue
            if token in "+-":
                sign = -1 if token == "-" else 1
                expect_term = True
                continue
            value = self._parse_term(token, symbol_map, address)
            if value is None:
                if strict:
                    raise ValueError(f"Undefined symbol: {token}")
                return None
            total += sign * value
            sign = 1
            expect_term = False
        if expect_term:
            raise ValueError(f"Invalid expression: {val_str.strip()}")
        return total

    def _parse_term(self, token: str, symbol_map: SymbolMap, address: int) -> Optional[int]:
        upper = token.upper()
        if token == "$":
            return address
        if len(token) == 3 and token[0] == token[2] and token[0] in "'\"":
            return ord(token[1])
        try:
            if upper.startswith("0X"):
                return int(token[2:], 16)
            if upper.startswith("$"):
                return int(token[1:], 16)
            if upper.endswith("H") and token[0].isdigit():
                return int(token[:-1], 16)
            if upper.startswith("%"):
                return int(token[1:], 2)
            if upper.startswith("0B") and len(token) > 2 and set(token[2:]) <= {"0", "1"}:
                return int(token[2:], 2)
            if upper.endswith("B") and len(token) > 1 and set(token[:-1]) <= {"0", "1"}:
                return int(token[:-1], 2)
            if token[0].isdigit():
                return int(token, 10)
        except ValueError:
            raise ValueError(f"Invalid number: {token}") from None
        if not _SYMBOL_PATTERN.match(token):
            raise ValueError(f"Invalid value: {token}")
        return symbol_map.get(token)

    def _classify_operand(self, text: str) -> _Operand:
        compact = re.sub(r"\s+", "", text).upper()
        if compact in self.REGISTER_TOKENS:
            index_match = _INDEX_PATTERN.match(compact)
            if index_match:
                return _Operand(compact, f"({index_match.group(1)}+d)", "0")
            return _Operand(compact, "reg", None)
        index_match = _INDEX_PATTERN.match(text.strip())
        if index_match:
            register = index_match.group(1).upper()
            return _Operand(compact, f"({register}+d)", index_match.group(2) or "0")
        stripped = text.strip()
        if stripped.startswith("(") and stripped.endswith(")"):
            return _Operand(compact, "(imm)", stripped[1:-1])
        return _Operand(compact, "imm", stripped)

    # --- Encoding ---

    # @intent:responsibility オペランドに合致するエンコード候補を探します。
    # @intent:rationale BIT/RES/SET/IM/RST はテンプレート中の数値リテラルと値が一致する候補を選びます。
    def _find_encoding(self, mnemonic: str, operands: List[_Operand], symbols: SymbolMap,
                       address: int, strict: bool) -> Optional[_Encoding]:
        for encoding in ENCODINGS.get(mnemonic, []):
            if len(encoding.tokens) != len(operands):
                continue
            if all(self._token_matches(token, operand, symbols, address, strict)
                   for token, operand in zip(encoding.tokens, operands)):
                return encoding
        return None

    def _token_matches(self, token: str, operand: _Operand, symbols: SymbolMap,
                       address: int, strict: bool) -> bool:
        if token in ("n", "nn", "e"):
            return operand.shape == "imm"
        if token in ("(n)", "(nn)"):
            return operand.shape == "(imm)"
        if token in ("(IX+d)", "(IY+d)"):
            return operand.shape == token
        if operand.text == token:
            return True
        if operand.shape == "imm" and _NUMERIC_LITERAL.match(token):
            literal = int(token[:-1], 16) if token.endswith("H") else int(token)
            value = self._parse_val(operand.expr, symbols, address, strict=strict)
            return value is None or value == literal
        return False

    def _encode(self, encoding: _Encoding, operands: List[_Operand], symbols: SymbolMap,
                address: int) -> bytes:
        data = list(encoding.opcode_bytes)
        length = encoding.definition.length
        for token, operand in zip(encoding.tokens, operands):
            if token not in PLACEHOLDER_SIZES:
                continue
            value = self._parse_val(operand.expr, symbols, address)
            if token == "e":
                offset = value - (address + length)
                if not -128 <= offset <= 127:
                    raise ValueError("Relative jump out of range")
                data.append(offset & 0xFF)
            elif token in ("(IX+d)", "(IY+d)"):
                if not -128 <= value <= 127:
                    raise ValueError(f"Index displacement out of range: {value}")
                data.append(value & 0xFF)
            elif token == "(n)":
                _check_range(value, 0, 0xFF)
                data.append(value)
            elif token == "n":
                _check_range(value, -0x80, 0xFF)
                data.append(value & 0xFF)
            else:
                _check_range(value, -0x8000, 0xFFFF)
                data.extend([value & 0xFF, (value >> 8) & 0xFF])
        data.extend(encoding.trailing_bytes)
        return bytes(data)

    # --- Passes ---

    # @intent:responsibility 1パス目: シンボルを確定し、各行のアドレスと長さを求めます。
    def _first_pass(self, lines: List[str], result: AssemblyResult) -> List[dict]:
        statements = []
        address = self._origin
        symbols = result.symbols

        for line_number, line in enumerate(lines, start=1):
            try:
                label, mnemonic, operands = self._parse_line(line)
            except ValueError as e:
                result.errors.append(AssemblyError(str(e), line_number, address))
                continue

            if label and mnemonic != "EQU":
                self._define_symbol(symbols, label, address, line_number, result)
            if not mnemonic:
                continue

            try:
                if mnemonic == "EQU":
                    value = self._parse_val(operands, symbols, address, strict=False)
                    if value is None:
                        raise ValueError(f"Undefined symbol in EQU: {operands}")
                    if label is None:
                        raise ValueError("EQU requires a label")
                    self._define_symbol(symbols, label, value & 0xFFFF, line_number, result)
                    continue
                if mnemonic == "ORG":
                    value = self._parse_val(operands, symbols, address, strict=False)
                    if value is None:
                        raise ValueError(f"Undefined symbol in ORG: {operands}")
                    address = value & 0xFFFF
                    continue
                if mnemonic == "END":
                    break
                size = self._statement_size(mnemonic, operands, symbols, address)
            except ValueError as e:
                result.errors.append(AssemblyError(str(e), line_number, address))
                continue

            statements.append({
                "line_number": line_number, "source": line, "mnemonic": mnemonic,
                "operands": operands, "address": address,
            })
            address = (address + size) & 0xFFFF
        return statements

    def _define_symbol(self, symbols: SymbolMap, name: str, value: int, line_number: int,
                       result: AssemblyResult) -> None:
        if name in symbols:
            result.errors.append(AssemblyError(f"Duplicate symbol: {name}", line_number, value))
            return
        symbols[name] = value

    def _statement_size(self, mnemonic: str, operands: str, symbols: SymbolMap, address: int) -> int:
        if mnemonic in ("DB", "DEFB"):
            return sum(len(item) for item in self._data_items(operands, symbols, address, strict=False))
        if mnemonic in ("DW", "DEFW"):
            return 2 * len(_split_operands(operands))
        if mnemonic in ("DS", "DEFS"):
            count = self._parse_val(_split_operands(operands)[0], symbols, address, strict=False)
            if count is None or count < 0:
                raise ValueError(f"Invalid DS size: {operands}")
            return count
        encoding = self._find_encoding(mnemonic, self._operands(operands), symbols, address, strict=False)
        if encoding is None:
            raise ValueError(self._unknown_message(mnemonic, operands))
        return encoding.definition.length

    # @intent:responsibility 2パス目: 各行のバイト列を生成します。エラーは行ごとに収集します。
    def _second_pass(self, statements: List[dict], result: AssemblyResult) -> None:
        symbols = result.symbols
        for statement in statements:
            address = statement["address"]
            mnemonic = statement["mnemonic"]
            operands = statement["operands"]
            try:
                if mnemonic in ("DB", "DEFB"):
                    data = b"".join(self._data_items(operands, symbols, address, strict=True))
                elif mnemonic in ("DW", "DEFW"):
                    data = b""
                    for item in _split_operands(operands):
                        value = self._parse_val(item, symbols, address)
                        _check_range(value, -0x8000, 0xFFFF)
                        data += bytes([value & 0xFF, (value >> 8) & 0xFF])
                elif mnemonic in ("DS", "DEFS"):
                    items = _split_operands(operands)
                    count = self._parse_val(items[0], symbols, address)
                    fill = self._parse_val(items[1], symbols, address) if len(items) > 1 else 0
                    _check_range(fill, -0x80, 0xFF)
                    data = bytes([fill & 0xFF]) * count
                else:
                    parsed = self._operands(operands)
                    encoding = self._find_encoding(mnemonic, parsed, symbols, address, strict=True)
                    if encoding is None:
                        raise ValueError(self._unknown_message(mnemonic, operands))
                    data = self._encode(encoding, parsed, symbols, address)
            except ValueError as e:
                result.errors.append(AssemblyError(str(e), statement["line_number"], address))
                continue
            result.lines.append(AssembledLine(statement["line_number"], address, data, statement["source"]))

    def _operands(self, operands: str) -> List[_Operand]:
        return [self._classify_operand(item) for item in _split_operands(operands)]

    def _data_items(self, operands: str, symbols: SymbolMap, address: int, strict: bool) -> List[bytes]:
        items = []
        for item in _split_operands(operands):
            if len(item) >= 2 and item[0] == item[-1] and item[0] in "'\"" and len(item) != 3:
                items.append(item[1:-1].encode("latin-1"))
                continue
            value = self._parse_val(item, symbols, address, strict=strict)
            if value is None:
                items.append(b"\x00")
                continue
            _check_range(value, -0x80, 0xFF)
            items.append(bytes([value & 0xFF]))
        return items

    def _unknown_message(self, mnemonic: str, operands: str) -> str:
        if mnemonic not in ENCODINGS:
            return f"Unknown instruction: {mnemonic}"
        return f"Invalid operands for {mnemonic}: {operands}"


def _check_range(value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise ValueError(f"Value out of range: {value}")


# @intent:utility_function 引用符内のセミコロンを残してコメントを除去します。
def _strip_comment(line: str) -> str:
    quote = None
    for i, ch in enumerate(line):
        if quote:
            if ch == quote:
                quote = None
        elif ch in "'\"" and (i == 0 or not line[i - 1].isalnum()):
            quote = ch
        elif ch == ";":
            return line[:i]
    return line


# @intent:utility_function カンマ区切りのオペランドを分割します。引用符で始まる項目内のカンマは区切りとみなしません。
def _split_operands(operands: str) -> List[str]:
    if not operands.strip():
        return []
    items = []
    current = ""
    quote = None
    for ch in operands:
        if quote:
            current += ch
            if ch == quote:
                quote = None
        elif ch in "'\"" and not current.strip():
            quote = ch
            current += ch
        elif ch == ",":
            items.append(current.strip())
            current = ""
        else:
            current += ch
    items.append(current.strip())
    return items
