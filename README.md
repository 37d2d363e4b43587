# rockusb

Host-side implementation of the Rockchip USB protocol ("rockusb") together
with a parser for Rockchip boot files.

The protocol logic does no I/O of its own: every operation is a sequence of
USB steps (control writes, bulk writes and bulk reads) that a transport
carries out. You supply the transport for the USB library you use; the
package takes care of command blocks, status checks, CRCs and the maskrom
upload format.

## Installation

```
pip install rockusb
```

The package has no runtime dependencies. To run the tests:

```
pip install "rockusb[test]"
pytest
```

## Inspecting a boot file

The `rockfile` command prints the header of a Rockchip boot file and every
entry in its 0x471, 0x472 and loader sections, with the CRC-16 of each data
blob:

```
rockfile boot-file path/to/loader.bin
```

It exits with status 1 and a message on standard error if the file cannot be
read or parsed.

The same information is available from Python through `rockusb.boot`:

```python
from rockusb.boot import read_boot_header, read_entries, read_entry_data, crc16

with open("loader.bin", "rb") as stream:
    header = read_boot_header(stream)
    for entry in read_entries(stream, header.entry_471):
        data = read_entry_data(stream, entry)
        print(entry.name_str(), hex(crc16(data)), entry.data_delay)
```

`RkBootHeader`, `RkBootHeaderEntry`, `RkBootEntry` and `RkTime` each have a
`from_bytes` class method for parsing raw records. A header that does not
start with a `BOOT` or `LDR ` tag, a record of the wrong length or a file that
ends too early raises `rockusb.boot.BootFileError`.

## Protocol records

`rockusb.protocol` holds the wire structures: `CommandBlock` (the 31-byte
command block, with constructors such as `CommandBlock.flash_info()` or
`CommandBlock.read_lba(start_sector, sectors)`), `CommandStatus` (the 13-byte
status), and the replies `ChipInfo`, `FlashId` (`to_str()`), `FlashInfo`
(`sectors()`, `size()`, `block_size_sectors()`) and `Capability`
(`direct_lba()`, `vendor_storage()`, `new_idb()` and the other flags). Both
wrappers round-trip through `to_bytes()` / `from_bytes()`; malformed input
raises `CommandBlockParseError` or `CommandStatusParseError`.

## Operations

`rockusb.operation` builds operations: `chip_info()`, `flash_id()`,
`flash_info()`, `capability()`, `erase_lba(first, count)`,
`erase_force(first, count)`, `reset_device(opcode)`,
`read_lba(start_sector, buffer)`, `write_lba(start_sector, data)` and
`write_area(area, data)` for maskrom uploads. Each has a `step()` method that
returns one of:

* `WriteControl` – a control transfer out (`request_type`, `request`,
  `value`, `index`, `data`),
* `WriteBulk` – a bulk write of `data`,
* `ReadBulk` – a bulk read that must fill the writable `data`,
* `Finished` – the operation is done; `unwrap()` returns its value or raises
  the `UsbOperationError` it ended with (`TagMismatch`, `FailedStatus`,
  `InvalidStatusSignature`, `InvalidStatusStatus`, `InvalidStatusLength`,
  `ReplyParseFailure`).

`read_lba` and `write_lba` need a length that is a multiple of 512 bytes and
raise `ValueError` otherwise.

## Talking to a device

Subclass `rockusb.device.Transport` and implement the three transfer methods
`_write_control(step)`, `_write_bulk(data)` and `_read_bulk(buffer)`. The
inherited `handle_operation` drives an operation's steps through them.
Exceptions of the types in the class attribute `transport_errors` (by default
`OSError`) are raised as `rockusb.device.UsbError`; protocol failures are
raised as `rockusb.device.OperationError`. Both derive from
`rockusb.device.DeviceError`, whose `error` attribute holds the cause.

Wrap the transport in a `Device`:

```python
from rockusb.device import Device
from rockusb.protocol import ResetOpcode

device = Device(MyTransport(...))

print(device.flash_id().to_str())
info = device.flash_info()
print(info.sectors(), "sectors,", info.size(), "bytes")
print("direct LBA:", device.capability().direct_lba())

device.reset_device(ResetOpcode.RESET)
```

### Sector I/O

`Device.read_lba(start_sector, buffer)` and `Device.write_lba(start_sector,
data)` work on whole 512-byte sectors and return the number of bytes
transferred. `Device.io()` returns a `DeviceIO`, a seekable raw binary stream
over the whole flash (its `size()` comes from the flash info). Unaligned
reads and writes go through a one-sector buffer that is written back when the
position leaves the sector or on `flush()`; aligned transfers of whole
sectors go straight to the device, at most 128 sectors at a time. Seeking is
clamped to the flash size, writing at the end raises `OSError`, and device
failures during I/O raise `BrokenPipeError`.

```python
with device.io() as stream:
    stream.seek(4096)
    stream.write(b"hello")
```

### Maskrom mode

In maskrom mode, code is uploaded to SRAM (area 0x471) or DDR (area 0x472):

```python
device.write_maskrom_area(0x471, sram_blob)
```

## Flashing helpers

`rockusb.tool` collects the usual tasks on top of a `Device`:

* `download_boot(device, path)` uploads the 0x471 and then the 0x472 entries
  of a boot file, waiting each entry's delay, and returns the entry names;
  `download_entry` does this for one section.
* `download_maskrom_area(device, area, path)` uploads a whole file.
* `erase_flash(device)` erases the flash in chunks (32768 sectors with
  `erase_lba` on eMMC or direct-LBA devices, otherwise 1024 with
  `erase_force`).
* `read_lba_to_file`, `write_lba_from_file` and `write_file(device, offset,
  path)` copy between files and the flash.
* `parse_device("<bus>:<address>")`, `parse_number` (decimal or `0x` hex),
  `reset_opcode_from_name` (`reset`, `msc`, `power-off`, `maskrom`,
  `disconnect`), `capability_names` and `find_bmap` help with argument
  handling.

## What this package does not do

It contains no USB backend: it does not list or open USB devices, so you must
supply a `Transport` for your USB library. There is no command line for
talking to devices; only `rockfile` is installed, and the helpers in
`rockusb.tool` are called from Python. `find_bmap` only locates a `.bmap`
file; writing images by bmap, and decompressing gzip images, is not provided.