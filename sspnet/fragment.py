"""Transport instructions and their split into MTU-sized fragments."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from .compressor import compress, uncompress

UINT64_MAX = (1 << 64) - 1
UINT16_MAX = (1 << 16) - 1

_INSTRUCTION_HEADER = struct.Struct(">IQQQQII")
_FRAGMENT_HEADER = struct.Struct(">QH")


@dataclass(frozen=True)
class Instruction:
    """One state-synchronisation message: a diff from old_num to new_num."""

    protocol_version: int = 0
    old_num: int = 0
    new_num: int = 0
    ack_num: int = 0
    throwaway_num: int = 0
    diff: bytes = b""
    chaff: bytes = b""

    def serialize(self) -> bytes:
        """Encode the instruction as bytes."""
        try:
            header = _INSTRUCTION_HEADER.pack(
                self.protocol_version,
                self.old_num,
                self.new_num,
                self.ack_num,
                self.throwaway_num,
                len(self.diff),
                len(self.chaff),
            )
        except struct.error as exc:
            raise ValueError(f"instruction field out of range: {exc}") from exc
        return header + bytes(self.diff) + bytes(self.chaff)

    @classmethod
    def parse(cls, data: bytes) -> Instruction:
        """Decode bytes made by serialize()."""
        data = bytes(data)
        if len(data) < _INSTRUCTION_HEADER.size:
            raise ValueError("instruction too short")
        version, old, new, ack, throwaway, diff_len, chaff_len = _INSTRUCTION_HEADER.unpack_from(data)
        body = data[_INSTRUCTION_HEADER.size:]
        if len(body) != diff_len + chaff_len:
            raise ValueError("instruction length mismatch")
        return cls(
            protocol_version=version,
            old_num=old,
            new_num=new,
            ack_num=ack,
            throwaway_num=throwaway,
            diff=body[:diff_len],
            chaff=body[diff_len:],
        )


@dataclass
class Fragment:
    """A piece of a compressed instruction, with its id and position."""

    HEADER_LEN = _FRAGMENT_HEADER.size

    id: int = UINT64_MAX
    fragment_num: int = UINT16_MAX
    final: bool = False
    contents: bytes = b""
    initialized: bool = field(default=True)

    def to_bytes(self) -> bytes:
        """Encode as an 8-byte id, a 16-bit final flag/number, then contents."""
        if not self.initialized:
            raise ValueError("fragment is not initialized")
        if self.fragment_num & 0x8000:
            raise ValueError("fragment number too large")
        combined = (int(bool(self.final)) << 15) | self.fragment_num
        return _FRAGMENT_HEADER.pack(self.id, combined) + bytes(self.contents)

    @classmethod
    def from_bytes(cls, data: bytes) -> Fragment:
        """Decode bytes made by to_bytes()."""
        data = bytes(data)
        if len(data) < cls.HEADER_LEN:
            raise ValueError("fragment too short")
        frag_id, combined = _FRAGMENT_HEADER.unpack_from(data)
        return cls(
            id=frag_id,
            fragment_num=combined & 0x7FFF,
            final=bool(combined & 0x8000),
            contents=data[cls.HEADER_LEN:],
        )


class FragmentAssembly:
    """Collects the fragments of one instruction until it is complete."""

    def __init__(self) -> None:
        self._fragments: list[Fragment | None] = []
        self._current_id = UINT64_MAX
        self._arrived = 0
        self._total = -1

    def add_fragment(self, frag: Fragment) -> bool:
        """Store a fragment; return True once every fragment has arrived."""
        num = frag.fragment_num
        if frag.id != self._current_id:
            self._fragments = [None] * (num + 1)
            self._fragments[num] = frag
            self._arrived = 1
            self._total = -1
            self._current_id = frag.id
        elif num < len(self._fragments) and self._fragments[num] is not None:
            if self._fragments[num] != frag:
                raise ValueError("conflicting duplicate fragment")
        else:
            if len(self._fragments) < num + 1:
                self._fragments.extend([None] * (num + 1 - len(self._fragments)))
            self._fragments[num] = frag
            self._arrived += 1

        if frag.final:
            self._total = num + 1
            if len(self._fragments) > self._total:
                raise ValueError("fragment beyond final fragment")
            self._fragments.extend([None] * (self._total - len(self._fragments)))

        if self._total != -1 and self._arrived > self._total:
            raise ValueError("more fragments than announced")

        return self._arrived == self._total

    def get_assembly(self) -> Instruction:
        """Decode the completed instruction and clear the collected fragments."""
        if self._arrived != self._total:
            raise ValueError("instruction is not complete")
        if any(frag is None for frag in self._fragments):
            raise ValueError("missing fragment")
        encoded = b"".join(frag.contents for frag in self._fragments)
        inst = Instruction.parse(uncompress(encoded))
        self._fragments = []
        self._arrived = 0
        self._total = -1
        return inst


class Fragmenter:
    """Splits instructions into fragments, numbering distinct instructions."""

    def __init__(self) -> None:
        self._next_instruction_id = 0
        self._last_instruction = Instruction(old_num=UINT64_MAX, new_num=UINT64_MAX)
        self._last_mtu: int | None = None

    def make_fragments(self, inst: Instruction, mtu: int) -> list[Fragment]:
        """Return the fragments of ``inst`` for a datagram payload size of ``mtu``."""
        mtu -= Fragment.HEADER_LEN
        if mtu <= 0:
            raise ValueError("MTU too small for a fragment")
        last = self._last_instruction
        if (
            inst.old_num != last.old_num
            or inst.new_num != last.new_num
            or inst.ack_num != last.ack_num
            or inst.throwaway_num != last.throwaway_num
            or inst.chaff != last.chaff
            or inst.protocol_version != last.protocol_version
            or self._last_mtu != mtu
        ):
            self._next_instruction_id += 1

        if inst.old_num == last.old_num and inst.new_num == last.new_num and inst.diff != last.diff:
            raise ValueError("same state numbers with a different diff")

        self._last_instruction = inst
        self._last_mtu = mtu

        payload = compress(inst.serialize())
        chunks = [payload[start:start + mtu] for start in range(0, len(payload), mtu)]
        return [
            Fragment(self._next_instruction_id, num, num == len(chunks) - 1, chunk)
            for num, chunk in enumerate(chunks)
        ]

    def last_ack_sent(self) -> int:
        """The ack number carried by the most recent instruction."""
        return self._last_instruction.ack_num