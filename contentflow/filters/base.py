# contentflow/filters/base.py
from abc import ABC


class JobFilter(ABC):
    def on_failure(self, elect_outcome_context):
        pass  # Default implementation does nothing
