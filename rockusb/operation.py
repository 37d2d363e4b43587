"""Protocol logic for Rockchip USB operations, independent of any USB backend.

Each operation is a small state machine. A transport repeatedly calls
``step()`` and carries out the returned step until it gets :class:`Finished`.
"""

from __future__ import annotations

import binascii
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Optional, Union

from rockusb.protocol import (
    COMMAND_BLOCK_BYTES,
    COMMAND_STATUS_BYTES,
    SECTOR_SIZE,
    Capability,
    ChipInfo,
    CommandBlock,
    CommandStatus,
    CommandStatusParseError,
    Direction,
    FlashId,
    FlashInfo,
    ResetOpcode,
    Status,
)

MASKROM_BLOCK_SIZE = 4096
MASKROM_REQUEST_TYPE = 0x40
MASKROM_REQUEST = 0x0C
_INBAND_SIZE = 16


class UsbOperationError(Exception):
    """Base class for failures of a USB operation."""


class TagMismatch(UsbOperationError):
    def __init__(self) -> None:
        super().__init__("Tag mismatch between command and status")


class InvalidStatusSignature(UsbOperationError):
    def __init__(self, signature: bytes) -> None:
        self.signature = bytes(signature)
        super().__init__(f"Incorrect status signature received: {list(self.signature)}")


class InvalidStatusStatus(UsbOperationError):
    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Invalid status status: {status}")


class InvalidStatusLength(UsbOperationError):
    def __init__(self) -> None:
        super().__init__("Invalid status data length")


class ReplyParseFailure(UsbOperationError):
    def __init__(self) -> None:
        super().__init__("Failed to parse reply")


class FailedStatus(UsbOperationError):
    def __init__(self) -> None:
        super().__init__("Device indicated operation failed")


def _from_status_error(error: CommandStatusParseError) -> UsbOperationError:
    if error.signature is not None:
        return InvalidStatusSignature(error.signature)
    if error.status is not None:
        return InvalidStatusStatus(error.status)
    return InvalidStatusLength()


@dataclass(frozen=True)
class WriteControl:
    """Write ``data`` using a control transfer."""

    request_type: int
    request: int
    value: int
    index: int
    data: bytes


@dataclass(frozen=True)
class WriteBulk:
    """Write ``data`` using a bulk transfer."""

    data: Any


@dataclass(frozen=True)
class ReadBulk:
    """Read exactly ``len(data)`` bytes with a bulk transfer into the writable ``data``."""

    data: memoryview


@dataclass(frozen=True)
class Finished:
    """The operation is done, with either a ``value`` or an ``error``."""

    value: Any = None
    error: UsbOperationError | None = None

    def unwrap(self) -> Any:
        """Return the value, or raise the error the operation ended with."""
        if self.error is not None:
            raise self.error
        return self.value


UsbStep = Union[WriteControl, WriteBulk, ReadBulk, Finished]


class _MaskRomState(Enum):
    WRITING = auto()
    DUMMY = auto()
    DONE = auto()


class MaskRomOperation:
    """Upload a blob to a maskrom area in 4 KiB control transfers, ending with a CRC."""

    def __init__(self, area: int, data: bytes) -> None:
        self.area = area
        self._data = memoryview(data)
        self._written = 0
        self._block = bytearray(MASKROM_BLOCK_SIZE)
        self._crc = 0xFFFF
        self._state = _MaskRomState.WRITING

    def _control(self, data: bytes) -> WriteControl:
        return WriteControl(
            request_type=MASKROM_REQUEST_TYPE,
            request=MASKROM_REQUEST,
            value=0,
            index=self.area,
            data=data,
        )

    def step(self) -> UsbStep:
        state, self._state = self._state, _MaskRomState.DONE
        if state is _MaskRomState.WRITING:
            chunk_size = min(MASKROM_BLOCK_SIZE, len(self._data) - self._written)
            self._block[:chunk_size] = self._data[self._written : self._written + chunk_size]
            self._written += chunk_size
            if chunk_size >= MASKROM_BLOCK_SIZE - 1:
                if chunk_size == MASKROM_BLOCK_SIZE - 1:
                    # Pad with a zero so the CRC is never split over two blocks.
                    self._block[-1] = 0
                self._crc = binascii.crc_hqx(self._block, self._crc)
                self._state = _MaskRomState.WRITING
                end = MASKROM_BLOCK_SIZE
            else:
                self._crc = binascii.crc_hqx(self._block[:chunk_size], self._crc)
                self._block[chunk_size] = self._crc >> 8
                self._block[chunk_size + 1] = self._crc & 0xFF
                end = chunk_size + 2
                if end == MASKROM_BLOCK_SIZE:
                    self._state = _MaskRomState.DUMMY
            return self._control(bytes(self._block[:end]))
        if state is _MaskRomState.DUMMY:
            self._block[0] = 0
            return self._control(bytes(self._block[:1]))
        return Finished()


def write_area(area: int, data: bytes) -> MaskRomOperation:
    """Write a maskrom area; typically 0x471 or 0x472 data from a boot file."""
    return MaskRomOperation(area, data)


class _Stage(Enum):
    COMMAND_BLOCK = auto()
    IO = auto()
    COMMAND_STATUS = auto()
    FINISH = auto()


Parser = Callable[[bytes, CommandStatus], Any]


class UsbOperation:
    """Operation using the full protocol: command block, optional data, status.

    Without a ``parse`` function the operation finishes with ``None`` on success.
    """

    def __init__(self, command: CommandBlock, parse: Optional[Parser] = None, io: Any = None) -> None:
        self.command = command
        self._parse = parse
        self._io = bytearray(_INBAND_SIZE) if io is None else io
        self._command_bytes = bytearray(COMMAND_BLOCK_BYTES)
        self._next = _Stage.COMMAND_BLOCK

    def step(self) -> UsbStep:
        stage, self._next = self._next, _Stage.COMMAND_BLOCK
        if stage is _Stage.COMMAND_BLOCK:
            self._command_bytes[:] = self.command.to_bytes()
            if self.command.transfer_length == 0:
                self._next = _Stage.COMMAND_STATUS
            else:
                self._next = _Stage.IO
            return WriteBulk(bytes(self._command_bytes))
        if stage is _Stage.IO:
            self._next = _Stage.COMMAND_STATUS
            view = memoryview(self._io)[: self.command.transfer_length]
            if self.command.direction is Direction.OUT:
                return WriteBulk(view)
            return ReadBulk(view)
        if stage is _Stage.COMMAND_STATUS:
            self._next = _Stage.FINISH
            return ReadBulk(memoryview(self._command_bytes)[:COMMAND_STATUS_BYTES])
        return self._finish()

    def _finish(self) -> Finished:
        try:
            status = CommandStatus.from_bytes(self._command_bytes)
        except CommandStatusParseError as exc:
            return Finished(error=_from_status_error(exc))
        if status.status == Status.FAILED:
            return Finished(error=FailedStatus())
        if status.tag != self.command.tag:
            return Finished(error=TagMismatch())
        if self._parse is None:
            return Finished()
        io = bytes(memoryview(self._io)[: self.command.transfer_length])
        try:
            return Finished(value=self._parse(io, status))
        except UsbOperationError as exc:
            return Finished(error=exc)


def _parse_record(record_type: Any) -> Parser:
    def parse(io: bytes, status: CommandStatus) -> Any:
        try:
            return record_type.from_bytes(io)
        except ValueError:
            raise ReplyParseFailure() from None

    return parse


@dataclass(frozen=True)
class Transferred:
    """Number of bytes actually transferred."""

    count: int

    def __int__(self) -> int:
        return self.count

    @classmethod
    def _from_operation(cls, io: bytes, status: CommandStatus) -> Transferred:
        total = len(io)
        if status.residue > total:
            raise ReplyParseFailure()
        return cls(total - status.residue)


def chip_info() -> UsbOperation:
    """Operation retrieving the SoC chip information."""
    return UsbOperation(CommandBlock.chip_info(), _parse_record(ChipInfo))


def flash_id() -> UsbOperation:
    """Operation retrieving the flash identifier."""
    return UsbOperation(CommandBlock.flash_id(), _parse_record(FlashId))


def flash_info() -> UsbOperation:
    """Operation retrieving the flash information."""
    return UsbOperation(CommandBlock.flash_info(), _parse_record(FlashInfo))


def capability() -> UsbOperation:
    """Operation retrieving the SoC capabilities."""
    return UsbOperation(CommandBlock.capability(), _parse_record(Capability))


def erase_lba(first: int, count: int) -> UsbOperation:
    """Operation erasing ``count`` sectors starting at ``first``."""
    return UsbOperation(CommandBlock.erase_lba(first, count))


def erase_force(first: int, count: int) -> UsbOperation:
    """Operation force-erasing ``count`` blocks starting at ``first``."""
    return UsbOperation(CommandBlock.erase_force(first, count))


def reset_device(opcode: ResetOpcode) -> UsbOperation:
    """Operation resetting the SoC."""
    return UsbOperation(CommandBlock.reset_device(opcode))


def _check_sectors(length: int) -> int:
    if length % SECTOR_SIZE:
        raise ValueError(f"Not a multiple of {SECTOR_SIZE}: {length}")
    return length // SECTOR_SIZE


def read_lba(start_sector: int, buffer: Any) -> UsbOperation:
    """Operation reading sectors into the writable ``buffer`` (a multiple of 512 bytes)."""
    view = memoryview(buffer)
    if view.readonly:
        raise TypeError("read buffer must be writable")
    sectors = _check_sectors(view.nbytes)
    return UsbOperation(CommandBlock.read_lba(start_sector, sectors), Transferred._from_operation, buffer)


def write_lba(start_sector: int, data: Any) -> UsbOperation:
    """Operation writing ``data`` (a multiple of 512 bytes) starting at ``start_sector``."""
    sectors = _check_sectors(memoryview(data).nbytes)
    return UsbOperation(CommandBlock.write_lba(start_sector, sectors), Transferred._from_operation, data)