"""Record IDs: prefixed, time-ordered, fixed-width.

    ord_01JH8Q3ZK5T0A   evt_01JH8Q3ZK5T0B   dlv_...   dsp_...   rev_...

The body is a 64-bit snowflake rendered as 13 Crockford base32 digits, so
string order equals creation order within a worker and `id` works as the
tie-breaker in `ORDER BY created_at DESC, id DESC` without a numeric cast.
"""

import threading
import time

_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"  # Crockford: no I, L, O, U
_WIDTH = 13  # ceil(64 / 5)


def encode_base32(value: int) -> str:
    """Fixed-width base32 of a non-negative 64-bit int."""
    if not (0 <= value < 1 << 64):
        raise ValueError(f"value out of 64-bit range: {value}")
    digits = []
    for _ in range(_WIDTH):
        value, rem = divmod(value, 32)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


class SnowflakeIdGenerator:
    """41 bits of milliseconds, 10 bits of worker id, 12 bits of sequence.

    Thread-safe. If the wall clock steps back, issuance continues from the
    last timestamp seen so IDs stay strictly increasing within a worker.
    """

    EPOCH_MS = 1_735_689_600_000  # 2025-01-01T00:00:00Z
    WORKER_BITS = 10
    SEQUENCE_BITS = 12

    def __init__(self, worker_id: int = 0) -> None:
        if not (0 <= worker_id < 1 << self.WORKER_BITS):
            raise ValueError(f"worker_id must be 0-{(1 << self.WORKER_BITS) - 1}")
        self.worker_id = worker_id
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def next_int(self) -> int:
        with self._lock:
            ms = max(self._now_ms(), self._last_ms)
            if ms == self._last_ms:
                self._sequence = (self._sequence + 1) & ((1 << self.SEQUENCE_BITS) - 1)
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond
                    while ms <= self._last_ms:
                        ms = self._now_ms()
            else:
                self._sequence = 0
            self._last_ms = ms
            return (
                (ms - self.EPOCH_MS) << (self.WORKER_BITS + self.SEQUENCE_BITS)
                | self.worker_id << self.SEQUENCE_BITS
                | self._sequence
            )

    def next_id(self, prefix: str = "") -> str:
        return prefix + encode_base32(self.next_int())


_generator = SnowflakeIdGenerator()


def generate_id(prefix: str = "") -> str:
    return _generator.next_id(prefix)
