# z80_core_tracer/arch/z80/state.py
"""
Z80 CPU固有の状態定義。

このモジュールは、Z80 CPUのレジスタ、フラグ、シャドウレジスタ、実行状態を保持するデータ構造と、
レジスタエディタ等からの部分的な状態更新を表す型付きの更新構造を定義します。
"""
from dataclasses import dataclass, field, fields, replace
from typing import Any, ClassVar, Dict, Mapping, Optional

from z80_core_tracer.core.state import CpuState

# Z80フラグビットマスク
# @intent:constant Z80フラグレジスタ内の各フラグビットの位置を定義します。
S_FLAG = 0b10000000  # Sign (符号)
Z_FLAG = 0b01000000  # Zero (ゼロ)
# 0b00100000 # Unused (常に0として扱う)
H_FLAG = 0b00010000  # Half Carry (ハーフキャリー)
# 0b00001000 # Unused (常に0として扱う)
PV_FLAG = 0b00000100 # Parity/Overflow (パリティ/オーバーフロー)
N_FLAG = 0b00000010  # Add/Subtract (加減算)
C_FLAG = 0b00000001  # Carry (キャリー)

FLAG_BITS = {"s": S_FLAG, "z": Z_FLAG, "h": H_FLAG, "pv": PV_FLAG, "n": N_FLAG, "c": C_FLAG}
DEFINED_FLAG_MASK = S_FLAG | Z_FLAG | H_FLAG | PV_FLAG | N_FLAG | C_FLAG

PRIMARY_REGISTERS = ("a", "b", "c", "d", "e", "h", "l")
SHADOW_REGISTERS = tuple(f"{name}_" for name in PRIMARY_REGISTERS)


# @intent:responsibility 6つのフラグを真偽値として保持します。Fレジスタはこのオブジェクトのパック表現です。
@dataclass
class Flags:
    s: bool = False
    z: bool = False
    h: bool = False
    pv: bool = False
    n: bool = False
    c: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        super().__setattr__(name, bool(value))

    # @intent:responsibility フラグを8ビットのFレジスタ値にパックします。ビット3と5は常に0です。
    def to_byte(self) -> int:
        value = 0
        for name, bit in FLAG_BITS.items():
            if getattr(self, name):
                value |= bit
        return value

    # @intent:responsibility 8ビット値をアンパックして各フラグに反映します。未定義ビットは無視されます。
    def load_byte(self, value: int) -> None:
        for name, bit in FLAG_BITS.items():
            setattr(self, name, (value & bit) != 0)

    @classmethod
    def from_byte(cls, value: int) -> "Flags":
        flags = cls()
        flags.load_byte(value)
        return flags

    def copy(self) -> "Flags":
        return replace(self)


# @intent:responsibility Z80 CPUの全てのレジスタとフラグの状態を保持します。
@dataclass
class Z80CpuState(CpuState):
    """
    Z80 CPUのレジスタ状態を保持するデータクラス。
    CpuStateを拡張し、Z80固有のレジスタを含みます。
    """
    # Main registers
    a: int = 0x00
    b: int = 0x00
    c: int = 0x00
    d: int = 0x00
    e: int = 0x00
    h: int = 0x00
    l: int = 0x00

    # Alternate registers
    a_: int = 0x00
    b_: int = 0x00
    c_: int = 0x00
    d_: int = 0x00
    e_: int = 0x00
    h_: int = 0x00
    l_: int = 0x00

    # Index registers
    ix: int = 0x0000
    iy: int = 0x0000

    # Special purpose registers
    i: int = 0x00  # Interrupt Vector
    r: int = 0x00  # Refresh Register
    im: int = 0    # Interrupt Mode (参考情報)

    halted: bool = False # CPU stop state flag
    interrupts_enabled: bool = False # EI/DIで変化する（割り込みの配送は行わない）

    flags: Flags = field(default_factory=Flags)
    flags_: Flags = field(default_factory=Flags)

    REGISTER_MASKS: ClassVar[Dict[str, int]] = {
        **CpuState.REGISTER_MASKS,
        **{name: 0xFF for name in PRIMARY_REGISTERS + SHADOW_REGISTERS},
        "ix": 0xFFFF, "iy": 0xFFFF, "i": 0xFF, "r": 0xFF, "im": 0x03,
    }
    BOOLEAN_FIELDS: ClassVar = frozenset({"halted", "interrupts_enabled"})

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("flags", "flags_") and not isinstance(value, Flags):
            value = Flags.from_byte(int(value))
        super().__setattr__(name, value)

    # @intent:responsibility 独立したディープコピーを返します。
    def copy(self) -> "Z80CpuState":
        return replace(self, flags=self.flags.copy(), flags_=self.flags_.copy())

    # @intent:responsibility 主レジスタ群（A..L）とフラグを裏レジスタ群と一括で交換します。
    # @intent:rationale IX, IY, SP, PC, I, R は交換対象外です。2回適用すると元に戻ります。
    def exchange_register_sets(self) -> None:
        self.exchange_af()
        self.exchange_bc_de_hl()

    # @intent:responsibility EX AF,AF' に相当する交換を行います。
    def exchange_af(self) -> None:
        self.a, self.a_ = self.a_, self.a
        self.flags, self.flags_ = self.flags_, self.flags

    # @intent:responsibility EXX に相当する交換を行います。
    def exchange_bc_de_hl(self) -> None:
        for name in PRIMARY_REGISTERS[1:]:
            shadow = f"{name}_"
            primary_value = getattr(self, name)
            setattr(self, name, getattr(self, shadow))
            setattr(self, shadow, primary_value)

    # @intent:accessor Z80のFレジスタの各フラグビットにアクセスするためのプロパティを提供します。
    # @intent:rationale フラグを直接ビット操作する代わりに、分かりやすいプロパティとして提供することで、コードの可読性と保守性を高めます。

    @property
    def f(self) -> int:
        return self.flags.to_byte()

    @f.setter
    def f(self, value: int) -> None:
        self.flags.load_byte(value & 0xFF)

    @property
    def f_(self) -> int:
        return self.flags_.to_byte()

    @f_.setter
    def f_(self, value: int) -> None:
        self.flags_.load_byte(value & 0xFF)

    @property
    def flag_s(self) -> bool:
        return self.flags.s

    @flag_s.setter
    def flag_s(self, value: bool) -> None:
        self.flags.s = value

    @property
    def flag_z(self) -> bool:
        return self.flags.z

    @flag_z.setter
    def flag_z(self, value: bool) -> None:
        self.flags.z = value

    @property
    def flag_h(self) -> bool:
        return self.flags.h

    @flag_h.setter
    def flag_h(self, value: bool) -> None:
        self.flags.h = value

    @property
    def flag_pv(self) -> bool:
        return self.flags.pv

    @flag_pv.setter
    def flag_pv(self, value: bool) -> None:
        self.flags.pv = value

    @property
    def flag_n(self) -> bool:
        return self.flags.n

    @flag_n.setter
    def flag_n(self, value: bool) -> None:
        self.flags.n = value

    @property
    def flag_c(self) -> bool:
        return self.flags.c

    @flag_c.setter
    def flag_c(self, value: bool) -> None:
        self.flags.c = value

    # 16-bit register pairs
    @property
    def af(self) -> int:
        return (self.a << 8) | self.f

    @af.setter
    def af(self, value: int) -> None:
        self.a = (value >> 8) & 0xFF
        self.f = value & 0xFF

    @property
    def bc(self) -> int:
        return (self.b << 8) | self.c

    @bc.setter
    def bc(self, value: int) -> None:
        self.b = (value >> 8) & 0xFF
        self.c = value & 0xFF

    @property
    def de(self) -> int:
        return (self.d << 8) | self.e

    @de.setter
    def de(self, value: int) -> None:
        self.d = (value >> 8) & 0xFF
        self.e = value & 0xFF

    @property
    def hl(self) -> int:
        return (self.h << 8) | self.l

    @hl.setter
    def hl(self, value: int) -> None:
        self.h = (value >> 8) & 0xFF
        self.l = value & 0xFF

    @property
    def af_(self) -> int:
        return (self.a_ << 8) | self.f_

    @af_.setter
    def af_(self, value: int) -> None:
        self.a_ = (value >> 8) & 0xFF
        self.f_ = value & 0xFF

    @property
    def bc_(self) -> int:
        return (self.b_ << 8) | self.c_

    @bc_.setter
    def bc_(self, value: int) -> None:
        self.b_ = (value >> 8) & 0xFF
        self.c_ = value & 0xFF

    @property
    def de_(self) -> int:
        return (self.d_ << 8) | self.e_

    @de_.setter
    def de_(self, value: int) -> None:
        self.d_ = (value >> 8) & 0xFF
        self.e_ = value & 0xFF

    @property
    def hl_(self) -> int:
        return (self.h_ << 8) | self.l_

    @hl_.setter
    def hl_(self, value: int) -> None:
        self.h_ = (value >> 8) & 0xFF
        self.l_ = value & 0xFF


def _check_optional(name: str, value: Any, expected) -> None:
    if value is None:
        return
    if expected is int and isinstance(value, bool):
        raise TypeError(f"Field '{name}' expects an integer, got bool")
    if not isinstance(value, expected):
        expected_names = "/".join(t.__name__ for t in (expected if isinstance(expected, tuple) else (expected,)))
        raise TypeError(f"Field '{name}' expects {expected_names}, got {type(value).__name__}")


# @intent:responsibility フラグの部分更新を表します。Noneのフィールドは変更しません。
@dataclass(frozen=True)
class FlagsUpdate:
    s: Optional[bool] = None
    z: Optional[bool] = None
    h: Optional[bool] = None
    pv: Optional[bool] = None
    n: Optional[bool] = None
    c: Optional[bool] = None

    def __post_init__(self) -> None:
        for f in fields(self):
            _check_optional(f.name, getattr(self, f.name), (bool, int))

    @classmethod
    def from_flags(cls, flags: Flags) -> "FlagsUpdate":
        return cls(**{name: getattr(flags, name) for name in FLAG_BITS})

    @classmethod
    def from_byte(cls, value: int) -> "FlagsUpdate":
        return cls.from_flags(Flags.from_byte(value))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "FlagsUpdate":
        values = {}
        for key, value in mapping.items():
            name = str(key).strip().lower().replace("/", "")
            if name == "p":
                name = "pv"
            if name not in FLAG_BITS:
                raise ValueError(f"Unknown flag name: {key}")
            values[name] = value
        return cls(**values)

    def apply_to(self, flags: Flags) -> None:
        for name in FLAG_BITS:
            value = getattr(self, name)
            if value is not None:
                setattr(flags, name, value)


_REGISTER_UPDATE_FIELDS = ("pc", "sp") + PRIMARY_REGISTERS + SHADOW_REGISTERS + ("ix", "iy", "i", "r", "im")
_BOOLEAN_UPDATE_FIELDS = ("halted", "interrupts_enabled")
_PAIR_NAMES = {
    "af": ("a", "f"), "bc": ("b", "c"), "de": ("d", "e"), "hl": ("h", "l"),
    "af_": ("a_", "f_"), "bc_": ("b_", "c_"), "de_": ("d_", "e_"), "hl_": ("h_", "l_"),
}
_ALIASES = {"interruptsenabled": "interrupts_enabled", "iff": "interrupts_enabled"}


# @intent:responsibility レジスタエディタ等からの部分的な状態更新を表す型付き構造。
# @intent:rationale レジスタ/フラグごとにOptionalなスロットを1つずつ持たせることで、
#                  キー名ベースの無検証マージを避け、型チェックされた網羅的なマージを行います。
@dataclass(frozen=True)
class StateUpdate:
    pc: Optional[int] = None
    sp: Optional[int] = None
    a: Optional[int] = None
    b: Optional[int] = None
    c: Optional[int] = None
    d: Optional[int] = None
    e: Optional[int] = None
    h: Optional[int] = None
    l: Optional[int] = None
    a_: Optional[int] = None
    b_: Optional[int] = None
    c_: Optional[int] = None
    d_: Optional[int] = None
    e_: Optional[int] = None
    h_: Optional[int] = None
    l_: Optional[int] = None
    ix: Optional[int] = None
    iy: Optional[int] = None
    i: Optional[int] = None
    r: Optional[int] = None
    im: Optional[int] = None
    halted: Optional[bool] = None
    interrupts_enabled: Optional[bool] = None
    flags: Optional[FlagsUpdate] = None
    flags_: Optional[FlagsUpdate] = None

    def __post_init__(self) -> None:
        for name in _REGISTER_UPDATE_FIELDS:
            _check_optional(name, getattr(self, name), int)
        for name in _BOOLEAN_UPDATE_FIELDS:
            _check_optional(name, getattr(self, name), (bool, int))
        for name in ("flags", "flags_"):
            _check_optional(name, getattr(self, name), FlagsUpdate)

    # @intent:responsibility 完全な状態から、全スロットが埋まった更新を生成します。
    @classmethod
    def from_state(cls, state: Z80CpuState) -> "StateUpdate":
        values = {name: getattr(state, name) for name in _REGISTER_UPDATE_FIELDS + _BOOLEAN_UPDATE_FIELDS}
        return cls(
            flags=FlagsUpdate.from_flags(state.flags),
            flags_=FlagsUpdate.from_flags(state.flags_),
            **values,
        )

    # @intent:responsibility レジスタ名をキーとする辞書から更新を生成します。
    # @intent:pre-condition キーはレジスタ名（"A", "A'", "hl", "f" など）。未知のキーはValueError。
    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "StateUpdate":
        values: Dict[str, Any] = {}
        flag_values: Dict[str, Dict[str, Any]] = {"flags": {}, "flags_": {}}

        def assign(name: str, value: Any) -> None:
            if name in ("f", "f_"):
                _check_optional(name, value, int)
                target = "flags" if name == "f" else "flags_"
                flag_values[target].update(vars(FlagsUpdate.from_byte(value)))
            elif name in ("flags", "flags_"):
                if isinstance(value, Mapping):
                    update = FlagsUpdate.from_mapping(value)
                    flag_values[name].update({k: v for k, v in vars(update).items() if v is not None})
                else:
                    assign("f" if name == "flags" else "f_", value)
            elif name in _REGISTER_UPDATE_FIELDS or name in _BOOLEAN_UPDATE_FIELDS:
                values[name] = value
            else:
                raise ValueError(f"Unknown register name: {name}")

        for key, value in mapping.items():
            name = str(key).strip().lower().replace("'", "_")
            name = _ALIASES.get(name, name)
            if name in _PAIR_NAMES:
                _check_optional(name, value, int)
                high, low = _PAIR_NAMES[name]
                assign(high, (value >> 8) & 0xFF)
                assign(low, value & 0xFF)
            else:
                assign(name, value)

        for target, flag_dict in flag_values.items():
            if flag_dict:
                values[target] = FlagsUpdate(**flag_dict)
        return cls(**values)

    # @intent:responsibility 存在するフィールドのみをライブ状態にマージします。
    # @intent:post-condition 指定されなかったレジスタ/フラグは変更されません。値は各レジスタ幅でマスクされます。
    def apply_to(self, state: Z80CpuState) -> None:
        for name in _REGISTER_UPDATE_FIELDS + _BOOLEAN_UPDATE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                setattr(state, name, value)
        if self.flags is not None:
            self.flags.apply_to(state.flags)
        if self.flags_ is not None:
            self.flags_.apply_to(state.flags_)

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))
