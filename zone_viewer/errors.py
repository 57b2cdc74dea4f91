from __future__ import annotations


class ZoneViewerError(RuntimeError):
    pass


class InvalidSnapshot(ZoneViewerError, ValueError):
    """Snapshot payload with a malformed entry or a non-finite/negative price or quantity."""


class InvalidDiff(InvalidSnapshot):
    pass


class BookNotReady(ZoneViewerError):
    pass


class SequenceGap(ZoneViewerError):
    def __init__(self, expected: int, received: int, gap_duration_ms: int) -> None:
        super().__init__(
            f"sequence gap: expected update starting at {expected}, got {received} "
            f"({gap_duration_ms}ms since last applied diff)"
        )
        self.expected = expected
        self.received = received
        self.gap_duration_ms = gap_duration_ms


class StalenessTimeout(ZoneViewerError):
    def __init__(self, silent_for_ms: int) -> None:
        super().__init__(f"no book update for {silent_for_ms}ms")
        self.silent_for_ms = silent_for_ms


class TransportError(ZoneViewerError):
    pass
