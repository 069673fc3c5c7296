from __future__ import annotations


class MemlayerError(Exception):
    """Base class for every error raised by memlayer."""


class ValidationError(MemlayerError, ValueError):
    pass


class ConfigError(ValidationError):
    pass


class NotFoundError(MemlayerError, LookupError):
    def __init__(self, memory_id: str) -> None:
        super().__init__(f"Memory not found: {memory_id}")
        self.memory_id = memory_id


class CodecError(MemlayerError, ValueError):
    pass


class DimensionMismatch(CodecError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class InvalidBlobSize(CodecError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Invalid BLOB size: expected {expected} bytes, got {actual} bytes")
        self.expected = expected
        self.actual = actual


class EmptyVector(CodecError):
    def __init__(self) -> None:
        super().__init__("Cannot compare empty vectors")


class InvalidEmbedding(CodecError):
    pass


class ConsistencyError(MemlayerError, RuntimeError):
    pass


class StorageError(MemlayerError, RuntimeError):
    def __init__(self, operation: str, detail: str, memory_id: str | None = None) -> None:
        target = f" (memory {memory_id})" if memory_id else ""
        super().__init__(f"Storage error during {operation}{target}: {detail}")
        self.operation = operation
        self.memory_id = memory_id


class EmbeddingError(MemlayerError, RuntimeError):
    pass
