"""Low-level data structures of the Rockchip USB protocol."""

from __future__ import annotations

import random
import struct
from dataclasses import dataclass
from enum import IntEnum

SECTOR_SIZE = 512
COMMAND_STATUS_BYTES = 13
COMMAND_BLOCK_BYTES = 31

_STATUS = struct.Struct(">4sI")
_CBW_HEAD = struct.Struct(">4sI")
_CBW_BODY = struct.Struct(">BBBBBIBH")


def _hex_list(data: bytes) -> str:
    return "[" + ", ".join(f"{b:x}" for b in data) + "]"


def _new_tag() -> int:
    return random.getrandbits(32)


class Direction(IntEnum):
    IN = 0x80
    OUT = 0x00


class CommandCode(IntEnum):
    TEST_UNIT_READY = 0x00
    READ_FLASH_ID = 0x01
    TEST_BAD_BLOCK = 0x03
    READ_SECTOR = 0x04
    WRITE_SECTOR = 0x05
    ERASE_NORMAL = 0x06
    ERASE_FORCE = 0x0B
    READ_LBA = 0x14
    WRITE_LBA = 0x15
    ERASE_SYSTEM_DISK = 0x16
    READ_SDRAM = 0x17
    WRITE_SDRAM = 0x18
    EXECUTE_SDRAM = 0x19
    READ_FLASH_INFO = 0x1A
    READ_CHIP_INFO = 0x1B
    SET_RESET_FLAG = 0x1E
    WRITE_EFUSE = 0x1F
    READ_EFUSE = 0x20
    READ_SPI_FLASH = 0x21
    WRITE_SPI_FLASH = 0x22
    WRITE_NEW_EFUSE = 0x23
    READ_NEW_EFUSE = 0x24
    ERASE_LBA = 0x25
    READ_CAPABILITY = 0xAA
    DEVICE_RESET = 0xFF


class ResetOpcode(IntEnum):
    RESET = 0
    MSC = 1
    POWER_OFF = 2
    MASKROM = 3
    DISCONNECT = 4


class Status(IntEnum):
    SUCCESS = 0
    FAILED = 1


class CommandStatusParseError(ValueError):
    """A command status (CSW) could not be parsed.

    Exactly one of ``signature``, ``length`` or ``status`` is set.
    """

    def __init__(self, message: str, *, signature=None, length=None, status=None):
        super().__init__(message)
        self.signature = signature
        self.length = length
        self.status = status

    @classmethod
    def invalid_signature(cls, signature: bytes) -> CommandStatusParseError:
        return cls(f"Invalid signature: {_hex_list(signature)}", signature=bytes(signature))

    @classmethod
    def invalid_length(cls, length: int) -> CommandStatusParseError:
        return cls(f"Invalid length: {length}", length=length)

    @classmethod
    def invalid_status(cls, status: int) -> CommandStatusParseError:
        return cls(f"Invalid status: {status}", status=status)


class CommandBlockParseError(ValueError):
    """A command block (CBW) could not be parsed.

    Exactly one of ``signature``, ``command_code``, ``flags`` or ``length`` is set.
    """

    def __init__(self, message: str, *, signature=None, command_code=None, flags=None, length=None):
        super().__init__(message)
        self.signature = signature
        self.command_code = command_code
        self.flags = flags
        self.length = length

    @classmethod
    def invalid_signature(cls, signature: bytes) -> CommandBlockParseError:
        return cls(
            f"Invalid Command block signature: {_hex_list(signature)}",
            signature=bytes(signature),
        )

    @classmethod
    def unknown_command_code(cls, code: int) -> CommandBlockParseError:
        return cls(f"Unknown Command code : {code:x}", command_code=code)

    @classmethod
    def unknown_flags(cls, flags: int) -> CommandBlockParseError:
        return cls(f"Unknown flags: {flags:x}", flags=flags)

    @classmethod
    def invalid_length(cls, length: int) -> CommandBlockParseError:
        return cls(f"Invalid command block length: {length}", length=length)


@dataclass(frozen=True)
class CommandStatus:
    """Command status wrapper (CSW) returned after every command."""

    tag: int
    residue: int
    status: Status

    def to_bytes(self) -> bytes:
        return (
            _STATUS.pack(b"USBS", self.tag)
            + struct.pack("<I", self.residue)
            + bytes([int(self.status)])
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> CommandStatus:
        data = bytes(data)
        if len(data) < COMMAND_STATUS_BYTES:
            raise CommandStatusParseError.invalid_length(len(data))
        magic, tag = _STATUS.unpack_from(data)
        if magic != b"USBS":
            raise CommandStatusParseError.invalid_signature(magic)
        (residue,) = struct.unpack_from("<I", data, 8)
        try:
            status = Status(data[12])
        except ValueError:
            raise CommandStatusParseError.invalid_status(data[12]) from None
        return cls(tag=tag, residue=residue, status=status)


def _exact(data: bytes, size: int, what: str) -> bytes:
    data = bytes(data)
    if len(data) != size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")
    return data


@dataclass(frozen=True)
class ChipInfo:
    data: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> ChipInfo:
        return cls(_exact(data, 16, "chip info"))


@dataclass(frozen=True)
class FlashId:
    data: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> FlashId:
        return cls(_exact(data, 5, "flash id"))

    def to_str(self) -> str:
        return self.data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class FlashInfo:
    data: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> FlashInfo:
        return cls(_exact(data, 11, "flash info"))

    def sectors(self) -> int:
        """Flash size in 512 byte sectors."""
        return struct.unpack_from("<I", self.data)[0]

    def size(self) -> int:
        """Flash size in bytes."""
        return self.sectors() * SECTOR_SIZE

    def block_size_sectors(self) -> int:
        """Block size in 512 byte sectors."""
        return struct.unpack_from("<H", self.data, 4)[0]


@dataclass(frozen=True)
class Capability:
    data: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> Capability:
        return cls(_exact(data, 8, "capability"))

    def _flag(self, index: int, bit: int) -> bool:
        return self.data[index] & bit == bit

    def direct_lba(self) -> bool:
        return self._flag(0, 0x01)

    def vendor_storage(self) -> bool:
        return self._flag(0, 0x02)

    def first_4m_access(self) -> bool:
        return self._flag(0, 0x04)

    def read_lba(self) -> bool:
        return self._flag(0, 0x08)

    def read_com_log(self) -> bool:
        return self._flag(0, 0x20)

    def read_idb_config(self) -> bool:
        return self._flag(0, 0x40)

    def read_secure_mode(self) -> bool:
        return self._flag(0, 0x80)

    def new_idb(self) -> bool:
        return self._flag(1, 0x01)


@dataclass(frozen=True)
class CommandBlock:
    """Command block wrapper (CBW) as in the USB mass storage specification."""

    tag: int
    transfer_length: int
    direction: Direction
    lun: int
    cdb_length: int
    code: CommandCode
    opcode: int
    address: int
    length: int

    @classmethod
    def _query(cls, code: CommandCode, transfer_length: int) -> CommandBlock:
        return cls(_new_tag(), transfer_length, Direction.IN, 0, 0x6, code, 0, 0, 0)

    @classmethod
    def flash_id(cls) -> CommandBlock:
        return cls._query(CommandCode.READ_FLASH_ID, 5)

    @classmethod
    def flash_info(cls) -> CommandBlock:
        return cls._query(CommandCode.READ_FLASH_INFO, 11)

    @classmethod
    def capability(cls) -> CommandBlock:
        return cls._query(CommandCode.READ_CAPABILITY, 8)

    @classmethod
    def chip_info(cls) -> CommandBlock:
        return cls._query(CommandCode.READ_CHIP_INFO, 16)

    @classmethod
    def erase_lba(cls, first: int, count: int) -> CommandBlock:
        return cls(_new_tag(), 0, Direction.OUT, 0, 0xA, CommandCode.ERASE_LBA, 0, first, count)

    @classmethod
    def erase_force(cls, first: int, count: int) -> CommandBlock:
        return cls(_new_tag(), 0, Direction.OUT, 0, 0xA, CommandCode.ERASE_FORCE, 0, first, count)

    @classmethod
    def read_lba(cls, start_sector: int, sectors: int) -> CommandBlock:
        return cls(
            _new_tag(), sectors * SECTOR_SIZE, Direction.IN, 0, 0xA,
            CommandCode.READ_LBA, 0, start_sector, sectors,
        )

    @classmethod
    def write_lba(cls, start_sector: int, sectors: int) -> CommandBlock:
        return cls(
            _new_tag(), sectors * SECTOR_SIZE, Direction.OUT, 0, 0xA,
            CommandCode.WRITE_LBA, 0, start_sector, sectors,
        )

    @classmethod
    def reset_device(cls, opcode: ResetOpcode) -> CommandBlock:
        return cls(
            _new_tag(), 0, Direction.OUT, 0, 0x6, CommandCode.DEVICE_RESET, int(opcode), 0, 0
        )

    def to_bytes(self) -> bytes:
        data = (
            _CBW_HEAD.pack(b"USBC", self.tag)
            + struct.pack("<I", self.transfer_length)
            + _CBW_BODY.pack(
                int(self.direction), self.lun, self.cdb_length, int(self.code),
                self.opcode, self.address, 0, self.length,
            )
        )
        return data.ljust(COMMAND_BLOCK_BYTES, b"\x00")

    @classmethod
    def from_bytes(cls, data: bytes) -> CommandBlock:
        data = bytes(data)
        if len(data) < COMMAND_BLOCK_BYTES:
            raise CommandBlockParseError.invalid_length(len(data))
        magic, tag = _CBW_HEAD.unpack_from(data)
        if magic != b"USBC":
            raise CommandBlockParseError.invalid_signature(magic)
        (transfer_length,) = struct.unpack_from("<I", data, 8)
        flags, lun, cdb_length, code, opcode, address, _, length = _CBW_BODY.unpack_from(data, 12)
        try:
            direction = Direction(flags)
        except ValueError:
            raise CommandBlockParseError.unknown_flags(flags) from None
        try:
            command = CommandCode(code)
        except ValueError:
            raise CommandBlockParseError.unknown_command_code(code) from None
        return cls(
            tag=tag,
            transfer_length=transfer_length,
            direction=direction,
            lun=lun,
            cdb_length=cdb_length,
            code=command,
            opcode=opcode,
            address=address,
            length=length,
        )