from archivist.models.document import ArchivedDocument
from archivist.models.source_run import SourceRun

__all__ = [
    "ArchivedDocument",
    "SourceRun",
]
