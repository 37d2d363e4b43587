"""Device wrapper running rockusb operations over a pluggable USB transport."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, Callable, TypeVar

from rockusb import operation
from rockusb.operation import (
    Finished,
    ReadBulk,
    UsbOperationError,
    WriteBulk,
    WriteControl,
)
from rockusb.protocol import (
    SECTOR_SIZE,
    Capability,
    ChipInfo,
    FlashId,
    FlashInfo,
    ResetOpcode,
)

MAX_IO_SIZE = 128 * SECTOR_SIZE

_T = TypeVar("_T")


class DeviceError(Exception):
    """Base class for errors raised by :class:`Device` methods."""

    def __init__(self, message: str, error: BaseException) -> None:
        super().__init__(message)
        self.error = error


class UsbError(DeviceError):
    """The USB transport failed."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(f"Usb error: {error}", error)


class OperationError(DeviceError):
    """The operation failed at the protocol level."""

    def __init__(self, error: UsbOperationError) -> None:
        super().__init__(f"Operation error: {error}", error)


class Transport(ABC):
    """Base class for USB transports.

    Subclasses carry out the individual USB transfers; :meth:`handle_operation`
    drives an operation's steps through them. Exceptions of the types listed in
    ``transport_errors`` are reported as :class:`UsbError`.
    """

    transport_errors: tuple[type[BaseException], ...] = (OSError,)

    def handle_operation(self, operation: Any) -> Any:
        """Run ``operation`` to completion and return its result."""
        while True:
            step = operation.step()
            if isinstance(step, Finished):
                if step.error is not None:
                    raise OperationError(step.error) from step.error
                return step.value
            try:
                if isinstance(step, WriteControl):
                    self._write_control(step)
                elif isinstance(step, WriteBulk):
                    self._write_bulk(step.data)
                elif isinstance(step, ReadBulk):
                    self._read_bulk(step.data)
                else:
                    raise TypeError(f"unexpected operation step {step!r}")
            except self.transport_errors as exc:
                raise UsbError(exc) from exc

    @abstractmethod
    def _write_control(self, step: WriteControl) -> None:
        """Send a control transfer described by ``step``."""

    @abstractmethod
    def _write_bulk(self, data: Any) -> None:
        """Send ``data`` with a bulk transfer."""

    @abstractmethod
    def _read_bulk(self, buffer: memoryview) -> None:
        """Fill ``buffer`` completely with a bulk transfer."""


class Device:
    """High level access to a Rockchip device in rockusb mode."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def _run(self, op: Any) -> Any:
        try:
            return self.transport.handle_operation(op)
        except UsbOperationError as exc:
            raise OperationError(exc) from exc

    def flash_id(self) -> FlashId:
        """Retrieve the flash identifier."""
        return self._run(operation.flash_id())

    def flash_info(self) -> FlashInfo:
        """Retrieve the flash information."""
        return self._run(operation.flash_info())

    def chip_info(self) -> ChipInfo:
        """Retrieve the chip information."""
        return self._run(operation.chip_info())

    def capability(self) -> Capability:
        """Retrieve the SoC capabilities."""
        return self._run(operation.capability())

    def erase_lba(self, first: int, count: int) -> None:
        """Erase ``count`` sectors starting at ``first``."""
        self._run(operation.erase_lba(first, count))

    def erase_force(self, first: int, count: int) -> None:
        """Force-erase ``count`` blocks starting at ``first``."""
        self._run(operation.erase_force(first, count))

    def read_lba(self, start_sector: int, buffer: Any) -> int:
        """Read into ``buffer`` (a multiple of 512 bytes); return bytes transferred."""
        return int(self._run(operation.read_lba(start_sector, buffer)))

    def write_lba(self, start_sector: int, data: Any) -> int:
        """Write ``data`` (a multiple of 512 bytes); return bytes transferred."""
        return int(self._run(operation.write_lba(start_sector, data)))

    def write_maskrom_area(self, area: int, data: bytes) -> None:
        """Upload ``data`` to a maskrom area, typically 0x471 or 0x472."""
        self._run(operation.write_area(area, data))

    def reset_device(self, opcode: ResetOpcode = ResetOpcode.RESET) -> None:
        """Reset the device in the way ``opcode`` selects."""
        self._run(operation.reset_device(opcode))

    def io(self) -> DeviceIO:
        """Return a file-like object over the whole flash."""
        return DeviceIO(self)


class _BufferState(Enum):
    INVALID = auto()  # buffer does not hold the current sector
    VALID = auto()  # buffer matches the current sector on the device
    DIRTY = auto()  # buffer holds the current sector with unwritten changes


class DeviceIO(io.RawIOBase):
    """Raw binary stream over a device's flash, buffering partial sectors."""

    def __init__(self, device: Device) -> None:
        super().__init__()
        self.device = device
        self._size = device.flash_info().size()
        self._offset = 0
        self._buffer = bytearray(SECTOR_SIZE)
        self._state = _BufferState.INVALID

    def size(self) -> int:
        """Size of the flash in bytes."""
        return self._size

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed file")

    def _sector(self) -> int:
        return self._offset // SECTOR_SIZE

    @staticmethod
    def _device_call(call: Callable[..., _T], *args: Any) -> _T:
        try:
            return call(*args)
        except DeviceError as exc:
            raise BrokenPipeError(str(exc)) from exc

    def _pre_io(self, length: int) -> tuple[bool, int, int] | None:
        """Plan an I/O of at most ``length`` bytes: (direct, buffer offset, length)."""
        if self._offset >= self._size:
            return None
        sector_offset = self._offset % SECTOR_SIZE
        if sector_offset == 0 and length >= SECTOR_SIZE:
            left = self._size - self._offset
            io_len = min(length, left) // SECTOR_SIZE * SECTOR_SIZE
            return True, 0, min(io_len, MAX_IO_SIZE)
        if self._state is _BufferState.INVALID:
            self._device_call(self.device.read_lba, self._sector(), self._buffer)
            self._state = _BufferState.VALID
        return False, sector_offset, min(length, SECTOR_SIZE - sector_offset)

    def _post_io(self, length: int) -> int:
        sector_remaining = SECTOR_SIZE - self._offset % SECTOR_SIZE
        if length >= sector_remaining:
            self._flush_buffer()
            self._state = _BufferState.INVALID
        self._offset += length
        return length

    def _flush_buffer(self) -> None:
        if self._state is _BufferState.DIRTY:
            self._device_call(self.device.write_lba, self._sector(), bytes(self._buffer))
            self._state = _BufferState.VALID

    def readinto(self, buffer: Any) -> int:
        self._check_open()
        view = memoryview(buffer).cast("B")
        if not len(view):
            return 0
        plan = self._pre_io(len(view))
        if plan is None:
            return 0
        direct, start, length = plan
        if direct:
            self._device_call(self.device.read_lba, self._sector(), view[:length])
        else:
            view[:length] = self._buffer[start : start + length]
        return self._post_io(length)

    def write(self, data: Any) -> int:
        self._check_open()
        view = memoryview(data).cast("B")
        if not len(view):
            return 0
        plan = self._pre_io(len(view))
        if plan is None:
            raise OSError("Trying to write past end of area")
        direct, start, length = plan
        if direct:
            self._device_call(self.device.write_lba, self._sector(), view[:length])
        else:
            self._buffer[start : start + length] = view[:length]
            self._state = _BufferState.DIRTY
        return self._post_io(length)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._check_open()
        if whence == io.SEEK_SET:
            if offset < 0:
                raise ValueError(f"negative seek position {offset}")
            target = min(self._size, offset)
        elif whence == io.SEEK_END:
            target = self._size if offset > 0 else max(0, self._size + offset)
        elif whence == io.SEEK_CUR:
            if offset > 0:
                target = min(self._offset + offset, self._size)
            else:
                target = max(0, self._offset + offset)
        else:
            raise ValueError(f"invalid whence ({whence})")
        if target // SECTOR_SIZE != self._sector():
            self._flush_buffer()
            self._state = _BufferState.INVALID
        self._offset = target
        return self._offset

    def tell(self) -> int:
        self._check_open()
        return self._offset

    def flush(self) -> None:
        super().flush()
        self._flush_buffer()