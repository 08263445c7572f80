"""Raw snapshot batches and decode results."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class RawSnapshotBatch:
    """One page of provider data, not yet decoded.

    ``key`` is the numeric blob index range for ``blob_v2`` batches
    (``"3-7"``) and the opaque blob key for legacy ``blob`` batches.
    """
    source: str
    key: Union[int, str]
    payload: List[Any]


@dataclass
class DecodeWarning:
    """A field that could not be decoded and was left as-is."""
    path: str
    message: str


@dataclass
class DecodeResult:
    """Events expanded from one raw snapshot plus the warnings collected."""
    events: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[DecodeWarning] = field(default_factory=list)

    def extend(self, other: "DecodeResult") -> None:
        self.events.extend(other.events)
        self.warnings.extend(other.warnings)

    def warn(self, path: str, message: str, window_id: Optional[str] = None) -> None:
        if window_id:
            path = f"{window_id}:{path}"
        self.warnings.append(DecodeWarning(path=path, message=message))
