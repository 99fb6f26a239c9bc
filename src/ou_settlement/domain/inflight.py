"""In-flight signature guard: process-local at-most-once admission."""

from collections.abc import Iterator
from contextlib import contextmanager

from src.ou_common.errors import TransactionSignatureAlreadyExists


class InFlightGuard:
    """Set of signatures currently being processed by this process.

    Single event loop: the membership test and the add happen without an
    await in between, so no lock is needed. A multi-process deployment
    relies on the unique signature index instead.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._signatures: set[str] = set()

    def __contains__(self, signature: str) -> bool:
        return signature in self._signatures

    def __len__(self) -> int:
        return len(self._signatures)

    @contextmanager
    def hold(self, signature: str) -> Iterator[None]:
        if signature in self._signatures:
            raise TransactionSignatureAlreadyExists(signature)
        self._signatures.add(signature)
        try:
            yield
        finally:
            self._signatures.discard(signature)
