"""
Snapshot codecs.

A codec turns the host's in-memory entity state into the opaque bytes
that are staged in the cache and pushed over pub/sub, and back again.
Exactly one codec is active per deployment; every process in a cluster
must use the same one.

Decode failures raise AdaptionFailure, which is always distinguishable
from "no data" (the cache reports absence as None, never as bytes).
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
import json
import logging
import zlib

from .errors import AdaptionFailure

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "handoff.snapshot"
SNAPSHOT_VERSION = 1

# First byte of a zlib stream at any compression level
_ZLIB_HEADER = 0x78


class SnapshotCodec(ABC):
    """
    Abstract base class for snapshot codecs.

    Example:
        class PickleCodec(SnapshotCodec):
            def encode(self, state):
                return pickle.dumps(state)

            def decode(self, data):
                try:
                    return pickle.loads(data)
                except pickle.UnpicklingError as e:
                    raise AdaptionFailure(str(e)) from e
    """

    @abstractmethod
    def encode(self, state: Any) -> bytes:
        """
        Encode entity state to bytes.

        Raises:
            AdaptionFailure: If the state cannot be represented
        """
        pass

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        """
        Decode bytes produced by encode() back to entity state.

        Raises:
            AdaptionFailure: If the payload is malformed or incompatible
        """
        pass


class JsonSnapshotCodec(SnapshotCodec):
    """
    JSON codec with a self-describing, versioned document.

    Encoded form (before optional zlib compression):

        {"format": "handoff.snapshot", "version": 1, "state": {...}}

    States exposing to_dict() are encoded through it. If a state_factory
    is given, decode() passes the state dictionary to it (typically a
    from_dict classmethod); otherwise the dictionary is returned as-is.

    Args:
        state_factory: Optional callable rebuilding host state from a dict
        compress: zlib-compress the encoded document
    """

    def __init__(
        self,
        state_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
        compress: bool = False,
    ):
        self.state_factory = state_factory
        self.compress = compress

    def _to_document(self, state: Any) -> Dict[str, Any]:
        if hasattr(state, "to_dict"):
            state = state.to_dict()
        if not isinstance(state, dict):
            raise AdaptionFailure(f"Cannot encode state of type {type(state).__name__}")
        return {"format": SNAPSHOT_FORMAT, "version": SNAPSHOT_VERSION, "state": state}

    def to_json(self, state: Any, pretty: bool = False) -> str:
        """Render state as the JSON document encode() would produce."""
        try:
            return json.dumps(self._to_document(state), indent=2 if pretty else None, sort_keys=pretty)
        except (TypeError, ValueError) as e:
            raise AdaptionFailure(f"State is not JSON serializable: {e}") from e

    def encode(self, state: Any) -> bytes:
        data = self.to_json(state).encode("utf-8")
        if self.compress:
            data = zlib.compress(data)
        return data

    def decode(self, data: bytes) -> Any:
        if not data:
            raise AdaptionFailure("Empty snapshot payload")

        # Accept both forms so a cluster can toggle compression without a flag day
        if data[0] == _ZLIB_HEADER:
            try:
                data = zlib.decompress(data)
            except zlib.error as e:
                raise AdaptionFailure(f"Corrupt compressed snapshot: {e}") from e

        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise AdaptionFailure(f"Failed to parse JSON snapshot: {e}") from e

        if not isinstance(document, dict) or document.get("format") != SNAPSHOT_FORMAT:
            raise AdaptionFailure("Payload is not a handoff snapshot")
        version = document.get("version")
        if version != SNAPSHOT_VERSION:
            raise AdaptionFailure(f"Unsupported snapshot version: {version}")
        state = document.get("state")
        if not isinstance(state, dict):
            raise AdaptionFailure("Snapshot state must be an object")

        if self.state_factory is None:
            return state
        try:
            return self.state_factory(state)
        except Exception as e:
            raise AdaptionFailure(f"Failed to rebuild state: {e}") from e


__all__ = ["SNAPSHOT_FORMAT", "SNAPSHOT_VERSION", "SnapshotCodec", "JsonSnapshotCodec"]
