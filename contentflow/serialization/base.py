# contentflow/serialization/base.py
import hashlib
from abc import ABC, abstractmethod
from typing import Dict, Any


class BaseSerializer(ABC):
    @abstractmethod
    def serialize_payload(self, payload: Dict[str, Any]) -> str: ...

    @abstractmethod
    def deserialize_payload(self, data: str) -> Dict[str, Any]: ...

    def fingerprint(self, job_type: str, payload: Dict[str, Any]) -> str:
        """Stable identity of ``(job_type, payload)`` used for unique pushes."""
        text = f"{job_type}\x00{self.serialize_payload(payload)}"
        return hashlib.sha256(text.encode("utf-8")).hexdigest()
