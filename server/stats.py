"""Read-only crawl statistics, frozen once startup ingestion finishes."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping

from indexer.store import Checkpoint
from pipelines.ingest import IngestReport


def _frozen(data: Dict) -> Mapping:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class CrawlStats:
    """Immutable ``{target name -> document count}`` tally."""
    documents: Mapping[str, int] = field(default_factory=lambda: _frozen({}))
    details: Mapping[str, Mapping[str, Any]] = field(default_factory=lambda: _frozen({}))

    @classmethod
    def from_reports(cls, reports: Iterable[IngestReport]) -> 'CrawlStats':
        documents = {}
        details = {}
        for report in reports:
            documents[report.target] = documents.get(report.target, 0) + report.indexed
            details[report.target] = _frozen(report.as_dict())
        return cls(documents=_frozen(documents), details=_frozen(details))

    @classmethod
    def from_counts(cls, counts: Mapping[str, int],
                    checkpoints: Iterable[Checkpoint] = ()) -> 'CrawlStats':
        """Tally from stored documents, for a server started without crawling.

        Each target's last checkpoint is reported under ``details``.
        """
        details = {
            c.target: _frozen({
                "indexed": counts.get(c.target, 0),
                "last_url": c.last_url,
                "committed_at": c.committed_at,
            })
            for c in checkpoints
        }
        return cls(documents=_frozen(counts), details=_frozen(details))

    @property
    def total(self) -> int:
        return sum(self.documents.values())

    def as_dict(self) -> Dict[str, Any]:
        return {
            "documents": dict(self.documents),
            "total": self.total,
            "targets": {name: dict(detail) for name, detail in self.details.items()},
        }
