# FILE: firmware_backend/services/coredump_service.py
"""
ESP-IDF core dump decoder.

The device uploads an ELF core file. Registers come from the NT_PRSTATUS
note inside PT_NOTE segments; addresses are returned raw so they can be
symbolized locally against the matching .elf.

The register layout differs between ESP-IDF versions, so the name table
is applied best-effort and may fill only partially.
"""
import base64
import binascii
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from firmware_backend.schemas.coredump import CoredumpResponse, CrashInfo

ELF_MAGIC = b"\x7fELF"
ELFCLASS32 = 1
ELFDATA2LSB = 1

PT_NOTE = 4
NT_PRSTATUS = 1

# ESP32 exception causes (esp-idf)
EXCEPTION_CAUSES: Dict[int, str] = {
    0: "IllegalInstructionCause",
    1: "SyscallCause",
    2: "InstructionFetchErrorCause",
    3: "LoadStoreErrorCause",
    4: "Level1InterruptCause",
    5: "AllocaCause",
    6: "IntegerDivideByZeroCause",
    8: "PrivilegedCause",
    9: "LoadStoreAlignmentCause",
    12: "InstrPIFDataErrorCause",
    13: "LoadStorePIFDataErrorCause",
    14: "InstrPIFAddrErrorCause",
    15: "LoadStorePIFAddrErrorCause",
    16: "InstTLBMissCause",
    17: "InstTLBMultiHitCause",
    18: "InstFetchPrivilegeCause",
    20: "InstFetchProhibitedCause",
    24: "LoadStoreTLBMissCause",
    25: "LoadStoreTLBMultiHitCause",
    26: "LoadStorePrivilegeCause",
    28: "LoadProhibitedCause",
    29: "StoreProhibitedCause",
}

# Xtensa register order in the prstatus descriptor
REGISTER_NAMES = [
    "PC", "PS", "A0", "A1", "A2", "A3", "A4", "A5",
    "A6", "A7", "A8", "A9", "A10", "A11", "A12", "A13",
    "A14", "A15", "SAR", "EXCCAUSE", "EXCVADDR", "LBEG",
    "LEND", "LCOUNT", "THREADPTR", "SCOMPARE1", "BR",
    "ACCLO", "ACCHI", "M0", "M1", "M2",
]

# (start, end) half-open
CODE_REGIONS = (
    (0x40000000, 0x40400000),  # IRAM
    (0x400D0000, 0x40400000),  # flash instruction cache
    (0x3F400000, 0x3F800000),  # flash data
)


class CoredumpError(Exception):
    pass


@dataclass
class ParsedCoredump:
    registers: Dict[str, int] = field(default_factory=dict)
    pc: Optional[int] = None
    exception_cause: Optional[int] = None
    backtrace: List[int] = field(default_factory=list)


def format_address(value: int) -> str:
    return f"0x{value:08x}"


def describe_exception_cause(code: int) -> str:
    return EXCEPTION_CAUSES.get(code, f"Unknown ({code})")


def is_code_address(addr: int) -> bool:
    return any(start <= addr < end for start, end in CODE_REGIONS)


def return_address_from_a0(a0: int) -> int:
    # windowed CALLn keeps the window increment in the top two bits
    return (a0 & 0x3FFFFFFF) | 0x40000000


def _align4(n: int) -> int:
    return (n + 3) & ~3


def _parse_registers(data: bytes, offset: int, size: int, fmt: str, parsed: ParsedCoredump) -> None:
    count = min(size // 4, len(REGISTER_NAMES))
    for i in range(count):
        pos = offset + i * 4
        if pos + 4 > len(data):
            break
        (value,) = struct.unpack_from(fmt + "I", data, pos)
        name = REGISTER_NAMES[i]
        parsed.registers[name] = value
        if name == "PC":
            parsed.pc = value
        elif name == "EXCCAUSE":
            parsed.exception_cause = value


def _parse_notes(data: bytes, offset: int, size: int, fmt: str, parsed: ParsedCoredump) -> None:
    pos = offset
    end = min(offset + size, len(data))
    while pos + 12 <= end:
        namesz, descsz, note_type = struct.unpack_from(fmt + "III", data, pos)
        pos += 12 + _align4(namesz)
        if note_type == NT_PRSTATUS:
            _parse_registers(data, pos, descsz, fmt, parsed)
        pos += _align4(descsz)


def parse_elf_coredump(data: bytes) -> ParsedCoredump:
    if len(data) < 52 or data[:4] != ELF_MAGIC:
        raise CoredumpError("Invalid ELF magic - not a valid coredump")
    if data[4] != ELFCLASS32:
        raise CoredumpError("Only 32-bit ELF coredumps are supported (ESP32)")

    fmt = "<" if data[5] == ELFDATA2LSB else ">"
    (phoff,) = struct.unpack_from(fmt + "I", data, 28)
    phentsize, phnum = struct.unpack_from(fmt + "HH", data, 42)

    parsed = ParsedCoredump()
    for i in range(phnum):
        ph = phoff + i * phentsize
        (p_type,) = struct.unpack_from(fmt + "I", data, ph)
        if p_type != PT_NOTE:
            continue
        (p_offset,) = struct.unpack_from(fmt + "I", data, ph + 4)
        (p_filesz,) = struct.unpack_from(fmt + "I", data, ph + 16)
        _parse_notes(data, p_offset, p_filesz, fmt, parsed)

    parsed.backtrace = build_backtrace(parsed)
    return parsed


def build_backtrace(parsed: ParsedCoredump) -> List[int]:
    """
    PC plus the caller derived from A0. This is not a stack walk: at most two
    frames, and the caller only when it lands in a known code region.
    """
    frames: List[int] = []
    if parsed.pc is not None:
        frames.append(parsed.pc)
    a0 = parsed.registers.get("A0")
    if a0:
        ret = return_address_from_a0(a0)
        if is_code_address(ret):
            frames.append(ret)
    return frames


def parse_coredump(base64_data: str) -> CoredumpResponse:
    """Decode an uploaded base64 core dump; never raises."""
    try:
        raw = base64.b64decode("".join(base64_data.split()), validate=True)
        parsed = parse_elf_coredump(raw)
    except (binascii.Error, ValueError, struct.error, CoredumpError) as e:
        return CoredumpResponse(success=False, error=str(e) or "Failed to parse coredump")

    return CoredumpResponse(
        success=True,
        crash_info=CrashInfo(
            exception_cause=(
                describe_exception_cause(parsed.exception_cause)
                if parsed.exception_cause is not None else None
            ),
            pc=format_address(parsed.pc) if parsed.pc is not None else None,
            registers={name: format_address(v) for name, v in parsed.registers.items()},
        ),
        backtrace=[format_address(a) for a in parsed.backtrace],
    )
