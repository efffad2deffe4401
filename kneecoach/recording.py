"""Read and write captured packet streams.

Two file formats are supported, chosen by suffix:

- ``.bin``: concatenated 94-byte binary frames;
- ``.jsonl``: one legacy JSON packet per line.

Malformed frames or lines are dropped with a warning, as on the live
link.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Union

from .constants import BINARY_PACKET_SIZE
from .exceptions import ProtocolError
from .protocol import decode_binary_packet, decode_json_packet, encode_packet
from .schema import SensorPacket, packet_to_dict

logger = logging.getLogger(__name__)

_SUFFIXES = (".bin", ".jsonl")


def _check_suffix(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix not in _SUFFIXES:
        raise ValueError(f"Unsupported recording format {suffix!r}; use one of {_SUFFIXES}")
    return suffix


def load_packets(path: Union[str, Path]) -> List[SensorPacket]:
    """Load a recording.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the suffix is not ``.bin`` or ``.jsonl``.
    """
    path = Path(path)
    suffix = _check_suffix(path)
    if not path.exists():
        raise FileNotFoundError(f"Recording not found: {path}")

    packets = []
    dropped = 0
    if suffix == ".bin":
        raw = path.read_bytes()
        usable = len(raw) - len(raw) % BINARY_PACKET_SIZE
        if usable != len(raw):
            logger.warning(f"{path.name}: ignoring {len(raw) - usable} trailing bytes")
        for offset in range(0, usable, BINARY_PACKET_SIZE):
            packets.append(decode_binary_packet(raw[offset:offset + BINARY_PACKET_SIZE]))
    else:
        with open(path, "rb") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    packets.append(decode_json_packet(line))
                except ProtocolError as exc:
                    dropped += 1
                    logger.warning(f"{path.name}:{lineno}: dropped packet ({exc})")

    logger.info(f"Loaded {len(packets)} packets from {path} ({dropped} dropped)")
    return packets


def save_packets(packets: Iterable[SensorPacket], path: Union[str, Path]) -> str:
    """Write *packets* as ``.bin`` frames or ``.jsonl`` lines."""
    path = Path(path)
    suffix = _check_suffix(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if suffix == ".bin":
        with open(path, "wb") as f:
            for packet in packets:
                f.write(encode_packet(packet))
    else:
        with open(path, "w") as f:
            for packet in packets:
                f.write(json.dumps(packet_to_dict(packet)) + "\n")
    return str(path)
