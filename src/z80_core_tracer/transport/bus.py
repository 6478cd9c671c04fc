# z80_core_tracer/transport/bus.py
"""
Transport Layer (メモリバス)

このモジュールは、Z80の16ビットアドレス空間（64KB）を単一のフラットな
バイト配列として表現し、バイト/ワード単位の読み書きを提供する責務を負います。
アドレスは常に 2^16 を法として折り返され、アクセスが失敗することはありません。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

ADDRESS_SPACE_SIZE = 0x10000
ADDRESS_MASK = 0xFFFF
BYTE_MASK = 0xFF

# @intent:responsibility バスアクセスを記録するためのタイプを定義します。
class BusAccessType(Enum):
    READ = "READ"
    WRITE = "WRITE"

# @intent:responsibility 個々のバスアクセス操作を記録します。
@dataclass(frozen=True) # 不変データ構造
class BusAccess:
    """
    バス上で行われた単一のアクセス（読み込みまたは書き込み）を記録するデータクラス。
    書き込みの場合は、ステップバック時の復元のために書き込み前の値を保持します。
    """
    address: int
    data: int # 8bit value
    access_type: BusAccessType
    previous_data: Optional[int] = None

# @intent:responsibility 64KBのアドレス空間を管理し、全てのCPUアクセスを記録するメモリバス。
# @intent:rationale バスの全てのアクセスを記録し、Snapshotに含めることでシステムの観測可能性を高めます。
class MemoryBus:
    """
    65,536セルのバイト配列を排他的に所有するメモリバス。
    外部からは本クラスのアクセサ経由でのみ参照・変更でき、配列そのものは公開しません。
    """
    # @intent:responsibility ゼロ初期化されたメモリとバスアクティビティログを用意します。
    def __init__(self):
        self._memory = bytearray(ADDRESS_SPACE_SIZE)
        self._bus_activity_log: List[BusAccess] = [] # バスアクセスログ

    # @intent:responsibility バスアクセスをログに記録します。
    def _log_access(self, address: int, data: int, access_type: BusAccessType,
                    previous_data: Optional[int] = None) -> None:
        self._bus_activity_log.append(
            BusAccess(address=address, data=data, access_type=access_type, previous_data=previous_data)
        )

    # @intent:responsibility 記録されたバスアクティビティログを取得し、クリアします。
    def get_and_clear_activity_log(self) -> List[BusAccess]:
        """
        現在のバスアクティビティログを返し、内部ログをクリアします。
        """
        log = self._bus_activity_log
        self._bus_activity_log = [] # ログをクリア
        return log

    # @intent:responsibility 指定されたアドレスから8bitのデータを読み出します。
    # @intent:post-condition 戻り値は常に 0..255。アドレスは 0x10000 を法として折り返されます。
    def read_byte(self, address: int) -> int:
        """
        指定されたアドレスから8bitのデータを読み出します。
        アクセスはログに記録されます。
        """
        address &= ADDRESS_MASK
        data = self._memory[address]
        self._log_access(address, data, BusAccessType.READ)
        return data

    # @intent:responsibility 指定されたアドレスに8bitのデータを書き込みます。
    def write_byte(self, address: int, value: int) -> None:
        """
        value を 256 で剰余した値を address（65536 で剰余）に格納します。
        アクセスは書き込み前の値とともにログに記録されます。
        """
        address &= ADDRESS_MASK
        value &= BYTE_MASK
        previous = self._memory[address]
        self._memory[address] = value
        self._log_access(address, value, BusAccessType.WRITE, previous_data=previous)

    # @intent:responsibility リトルエンディアンで16bitのデータを読み出します。
    def read_word(self, address: int) -> int:
        low = self.read_byte(address)
        high = self.read_byte(address + 1)
        return (high << 8) | low

    # @intent:responsibility リトルエンディアンで16bitのデータを書き込みます。
    def write_word(self, address: int, value: int) -> None:
        self.write_byte(address, value & BYTE_MASK)
        self.write_byte(address + 1, (value >> 8) & BYTE_MASK)

    # @intent:responsibility 外部でアセンブル/ロードされたプログラムを連続したアドレスに配置します。
    # @intent:rationale 数KB単位の書き込みでアクティビティログを膨らませないよう、ログは記録しません。
    def load_program(self, data: Iterable[int], start_address: int = 0) -> int:
        """
        data の各バイトを start_address から順に格納し（折り返しあり）、格納したバイト数を返します。
        """
        address = start_address & ADDRESS_MASK
        count = 0
        for byte in data:
            self._memory[address] = byte & BYTE_MASK
            address = (address + 1) & ADDRESS_MASK
            count += 1
        return count

    # @intent:responsibility ログを記録せずに指定されたアドレスからデータを読み出します。
    def peek(self, address: int) -> int:
        """
        指定されたアドレスから8bitのデータを読み出します（ログ記録なし）。
        逆アセンブラやメモリビューなどのインスペクタ用。
        """
        return self._memory[address & ADDRESS_MASK]

    # @intent:responsibility ログを記録せずに指定されたアドレスへデータを書き込みます。
    # @intent:rationale ステップバック時のメモリ復元は、新たなバスアクティビティとして扱いません。
    def poke(self, address: int, value: int) -> None:
        self._memory[address & ADDRESS_MASK] = value & BYTE_MASK

    # @intent:responsibility 指定範囲のメモリ内容のコピーを返します（16進ダンプ表示用）。
    def dump(self, start_address: int, length: int) -> bytes:
        start = start_address & ADDRESS_MASK
        length = max(0, min(length, ADDRESS_SPACE_SIZE))
        end = start + length
        if end <= ADDRESS_SPACE_SIZE:
            return bytes(self._memory[start:end])
        return bytes(self._memory[start:]) + bytes(self._memory[:end - ADDRESS_SPACE_SIZE])

    # @intent:responsibility 全メモリをゼロクリアします。
    def clear(self) -> None:
        self._memory[:] = bytes(ADDRESS_SPACE_SIZE)
        self._bus_activity_log = []
