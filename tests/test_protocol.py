import pytest

from rockusb.protocol import (
    COMMAND_BLOCK_BYTES,
    COMMAND_STATUS_BYTES,
    SECTOR_SIZE,
    Capability,
    ChipInfo,
    CommandBlock,
    CommandBlockParseError,
    CommandCode,
    CommandStatus,
    CommandStatusParseError,
    Direction,
    FlashId,
    FlashInfo,
    ResetOpcode,
    Status,
)


def test_csw():
    c = CommandStatus(tag=0x11223344, residue=0x55667788, status=Status.SUCCESS)
    b = c.to_bytes()
    assert len(b) == COMMAND_STATUS_BYTES
    assert CommandStatus.from_bytes(b) == c


def test_cbw():
    c = CommandBlock(
        tag=0xDEAD,
        transfer_length=0x11223344,
        direction=Direction.OUT,
        lun=0x66,
        cdb_length=0x77,
        code=CommandCode.ERASE_FORCE,
        opcode=0x10,
        address=0x11223344,
        length=0x5566,
    )
    b = c.to_bytes()
    assert len(b) == COMMAND_BLOCK_BYTES
    assert CommandBlock.from_bytes(b) == c


def test_cbw_wire_layout():
    c = CommandBlock.read_lba(0x11223344, 4)
    b = c.to_bytes()
    assert b[:4] == b"USBC"
    assert b[4:8] == c.tag.to_bytes(4, "big")
    assert b[8:12] == (4 * SECTOR_SIZE).to_bytes(4, "little")
    assert b[12] == Direction.IN
    assert b[15] == CommandCode.READ_LBA
    assert b[17:21] == (0x11223344).to_bytes(4, "big")
    assert b[22:24] == (4).to_bytes(2, "big")


def test_csw_wire_layout():
    b = CommandStatus(tag=0x11223344, residue=7, status=Status.FAILED).to_bytes()
    assert b[:4] == b"USBS"
    assert b[4:8] == (0x11223344).to_bytes(4, "big")
    assert b[8:12] == (7).to_bytes(4, "little")
    assert b[12] == Status.FAILED


def test_csw_too_short():
    with pytest.raises(CommandStatusParseError) as info:
        CommandStatus.from_bytes(b"USBS")
    assert info.value.length == 4


def test_csw_bad_signature():
    with pytest.raises(CommandStatusParseError) as info:
        CommandStatus.from_bytes(b"USBC" + bytes(9))
    assert info.value.signature == b"USBC"


def test_csw_bad_status():
    data = CommandStatus(1, 0, Status.SUCCESS).to_bytes()[:12] + bytes([2])
    with pytest.raises(CommandStatusParseError) as info:
        CommandStatus.from_bytes(data)
    assert info.value.status == 2


def test_cbw_errors():
    good = CommandBlock.flash_id().to_bytes()
    with pytest.raises(CommandBlockParseError) as info:
        CommandBlock.from_bytes(good[:30])
    assert info.value.length == 30
    with pytest.raises(CommandBlockParseError) as info:
        CommandBlock.from_bytes(b"USBS" + good[4:])
    assert info.value.signature == b"USBS"
    with pytest.raises(CommandBlockParseError) as info:
        CommandBlock.from_bytes(good[:12] + bytes([0x01]) + good[13:])
    assert info.value.flags == 0x01
    with pytest.raises(CommandBlockParseError) as info:
        CommandBlock.from_bytes(good[:15] + bytes([0x02]) + good[16:])
    assert info.value.command_code == 0x02


def test_constructors():
    assert CommandBlock.flash_id().transfer_length == 5
    assert CommandBlock.flash_info().transfer_length == 11
    assert CommandBlock.capability().transfer_length == 8
    assert CommandBlock.chip_info().transfer_length == 16
    erase = CommandBlock.erase_lba(100, 50)
    assert (erase.transfer_length, erase.direction, erase.address, erase.length) == (
        0, Direction.OUT, 100, 50,
    )
    assert CommandBlock.erase_force(1, 2).code == CommandCode.ERASE_FORCE
    write = CommandBlock.write_lba(9, 3)
    assert write.transfer_length == 3 * SECTOR_SIZE
    assert write.direction == Direction.OUT
    reset = CommandBlock.reset_device(ResetOpcode.MASKROM)
    assert reset.opcode == ResetOpcode.MASKROM
    assert reset.code == CommandCode.DEVICE_RESET


def test_tags_are_32_bit():
    for _ in range(20):
        assert 0 <= CommandBlock.flash_id().tag < 2**32


def test_flash_info():
    info = FlashInfo.from_bytes((2048).to_bytes(4, "little") + (64).to_bytes(2, "little") + bytes(5))
    assert info.sectors() == 2048
    assert info.size() == 2048 * SECTOR_SIZE
    assert info.block_size_sectors() == 64


def test_flash_id():
    assert FlashId.from_bytes(b"EMMC ").to_str() == "EMMC "


def test_chip_info_length():
    assert ChipInfo.from_bytes(b"8853" + bytes(12)).data[:4] == b"8853"
    with pytest.raises(ValueError):
        ChipInfo.from_bytes(bytes(15))


def test_capability_flags():
    cap = Capability.from_bytes(bytes([0x01 | 0x08 | 0x80, 0x01]) + bytes(6))
    assert cap.direct_lba()
    assert cap.read_lba()
    assert cap.read_secure_mode()
    assert cap.new_idb()
    assert not cap.vendor_storage()
    assert not cap.first_4m_access()
    assert not cap.read_com_log()
    assert not cap.read_idb_config()
    empty = Capability.from_bytes(bytes(8))
    assert not any(
        f() for f in (empty.direct_lba, empty.new_idb, empty.read_lba, empty.vendor_storage)
    )