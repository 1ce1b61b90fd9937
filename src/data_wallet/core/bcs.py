"""
BCS Codec

Binary Canonical Serialization for the small subset of Sui types the
wallet builds itself:

- ULEB128 lengths, fixed-width little-endian integers, addresses, strings
- Programmable transaction kinds (pure/object inputs, Move calls)

Full transaction data (gas, sender, expiration) is always built by the
chain node; only the unsigned TransactionKind used for policy checks is
assembled locally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Union
import struct

ADDRESS_LENGTH = 32


def normalize_address(value: str) -> str:
    """Normalize a hex address/object id to 0x + 64 lowercase hex chars"""
    raw = value.lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not raw or len(raw) > ADDRESS_LENGTH * 2:
        raise ValueError(f"Invalid address: {value!r}")
    int(raw, 16)  # validates hex
    return "0x" + raw.rjust(ADDRESS_LENGTH * 2, "0")


def address_to_bytes(value: str) -> bytes:
    return bytes.fromhex(normalize_address(value)[2:])


def bytes_to_address(raw: bytes) -> str:
    if len(raw) != ADDRESS_LENGTH:
        raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(raw)}")
    return "0x" + raw.hex()


class Serializer:
    """Append-only BCS writer"""

    def __init__(self):
        self._buf = bytearray()

    def uleb128(self, value: int) -> "Serializer":
        if value < 0:
            raise ValueError("ULEB128 cannot encode negative values")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def u8(self, value: int) -> "Serializer":
        self._buf += struct.pack("<B", value)
        return self

    def u16(self, value: int) -> "Serializer":
        self._buf += struct.pack("<H", value)
        return self

    def u64(self, value: int) -> "Serializer":
        self._buf += struct.pack("<Q", value)
        return self

    def bool(self, value: bool) -> "Serializer":
        return self.u8(1 if value else 0)

    def fixed_bytes(self, value: bytes) -> "Serializer":
        self._buf += value
        return self

    def bytes(self, value: bytes) -> "Serializer":
        """vector<u8>"""
        self.uleb128(len(value))
        self._buf += value
        return self

    def str(self, value: str) -> "Serializer":
        return self.bytes(value.encode("utf-8"))

    def address(self, value: str) -> "Serializer":
        return self.fixed_bytes(address_to_bytes(value))

    def output(self) -> bytes:
        return bytes(self._buf)


class Deserializer:
    """Cursor-based BCS reader"""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0

    def _take(self, n: int) -> bytes:
        if self._pos + n > len(self._data):
            raise ValueError(
                f"Unexpected end of BCS input at offset {self._pos} (need {n} bytes)"
            )
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def uleb128(self) -> int:
        result = 0
        shift = 0
        while True:
            byte = self._take(1)[0]
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7
            if shift > 63:
                raise ValueError("ULEB128 value overflows u64")

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def bool(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise ValueError(f"Invalid BCS bool: {value}")
        return value == 1

    def fixed_bytes(self, n: int) -> bytes:
        return self._take(n)

    def bytes(self) -> bytes:
        return self._take(self.uleb128())

    def str(self) -> str:
        return self.bytes().decode("utf-8")

    def address(self) -> str:
        return bytes_to_address(self._take(ADDRESS_LENGTH))

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def finish(self) -> None:
        """Fail if there are unread trailing bytes"""
        if self.remaining:
            raise ValueError(f"{self.remaining} trailing bytes after BCS value")


# =============================================================================
# Programmable transaction kinds
# =============================================================================

@dataclass
class PureArg:
    """Pure input: already BCS-encoded value bytes"""
    value: bytes

    @classmethod
    def vector_u8(cls, data: bytes) -> "PureArg":
        return cls(Serializer().bytes(data).output())

    @classmethod
    def address(cls, value: str) -> "PureArg":
        return cls(address_to_bytes(value))


@dataclass
class SharedObjectArg:
    object_id: str
    initial_shared_version: int
    mutable: bool = False


@dataclass
class OwnedObjectArg:
    object_id: str
    version: int
    digest: bytes


CallArg = Union[PureArg, SharedObjectArg, OwnedObjectArg]


@dataclass
class MoveCall:
    package: str
    module: str
    function: str
    # Indices into the transaction inputs
    arguments: List[int] = field(default_factory=list)

    @property
    def target(self) -> str:
        return f"{normalize_address(self.package)}::{self.module}::{self.function}"


@dataclass
class ProgrammableTransaction:
    """TransactionKind::ProgrammableTransaction limited to Move calls on inputs"""
    inputs: List[CallArg] = field(default_factory=list)
    commands: List[MoveCall] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        ser = Serializer()
        ser.uleb128(0)  # TransactionKind::ProgrammableTransaction
        ser.uleb128(len(self.inputs))
        for arg in self.inputs:
            _write_call_arg(ser, arg)
        ser.uleb128(len(self.commands))
        for call in self.commands:
            ser.uleb128(0)  # Command::MoveCall
            ser.address(call.package)
            ser.str(call.module)
            ser.str(call.function)
            ser.uleb128(0)  # no type arguments
            ser.uleb128(len(call.arguments))
            for index in call.arguments:
                ser.uleb128(1)  # Argument::Input
                ser.u16(index)
        return ser.output()

    @classmethod
    def from_bytes(cls, data: bytes) -> "ProgrammableTransaction":
        de = Deserializer(data)
        kind = de.uleb128()
        if kind != 0:
            raise ValueError(f"Unsupported transaction kind variant {kind}")

        inputs = [_read_call_arg(de) for _ in range(de.uleb128())]

        commands = []
        for _ in range(de.uleb128()):
            variant = de.uleb128()
            if variant != 0:
                raise ValueError(f"Unsupported command variant {variant}")
            package = de.address()
            module = de.str()
            function = de.str()
            if de.uleb128():
                raise ValueError("Type arguments are not supported")
            arguments = []
            for _ in range(de.uleb128()):
                arg_kind = de.uleb128()
                if arg_kind != 1:
                    raise ValueError(f"Unsupported argument variant {arg_kind}")
                arguments.append(de.u16())
            commands.append(MoveCall(package, module, function, arguments))

        de.finish()
        return cls(inputs=inputs, commands=commands)

    def resolve(self, call: MoveCall) -> List[CallArg]:
        """Inputs referenced by a call, in argument order"""
        try:
            return [self.inputs[i] for i in call.arguments]
        except IndexError as e:
            raise ValueError(f"Call {call.target} references a missing input") from e


def _write_call_arg(ser: Serializer, arg: CallArg) -> None:
    if isinstance(arg, PureArg):
        ser.uleb128(0)
        ser.bytes(arg.value)
    elif isinstance(arg, OwnedObjectArg):
        ser.uleb128(1)
        ser.uleb128(0)  # ObjectArg::ImmOrOwnedObject
        ser.address(arg.object_id)
        ser.u64(arg.version)
        ser.bytes(arg.digest)
    elif isinstance(arg, SharedObjectArg):
        ser.uleb128(1)
        ser.uleb128(1)  # ObjectArg::SharedObject
        ser.address(arg.object_id)
        ser.u64(arg.initial_shared_version)
        ser.bool(arg.mutable)
    else:
        raise TypeError(f"Unsupported call argument: {arg!r}")


def _read_call_arg(de: Deserializer) -> CallArg:
    variant = de.uleb128()
    if variant == 0:
        return PureArg(de.bytes())
    if variant != 1:
        raise ValueError(f"Unsupported call argument variant {variant}")

    object_variant = de.uleb128()
    if object_variant == 0:
        return OwnedObjectArg(de.address(), de.u64(), de.bytes())
    if object_variant == 1:
        return SharedObjectArg(de.address(), de.u64(), de.bool())
    raise ValueError(f"Unsupported object argument variant {object_variant}")


def decode_vector_u8(pure: bytes) -> bytes:
    """Decode a pure input holding vector<u8>"""
    de = Deserializer(pure)
    value = de.bytes()
    de.finish()
    return value
