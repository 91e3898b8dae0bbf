# contentflow/serialization/json_serializer.py
import json
from typing import Dict, Any

from contentflow.serialization.base import BaseSerializer


class JsonSerializer(BaseSerializer):
    def serialize_payload(self, payload: Dict[str, Any]) -> str:
        # Sorted keys so that equal documents serialize to equal text.
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def deserialize_payload(self, data: str) -> Dict[str, Any]:
        if not data:
            return {}
        return json.loads(data)
