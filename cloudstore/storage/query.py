"""Listing queries and post-fetch filters.

Prefix and delimiter are pushed down to the backend's list call. Once a
page is back, filters run locally in order: the start offset
(inclusive), the end offset (exclusive), then every registered filter
such as the name sort.
"""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, List, Sequence

if TYPE_CHECKING:
    from cloudstore.storage.object import StoreObject


ObjectFilter = Callable[[List["StoreObject"]], List["StoreObject"]]


def sort_filter(objects: List["StoreObject"]) -> List["StoreObject"]:
    """Stable sort by object name."""
    return sorted(objects, key=lambda o: o.name)


@dataclass
class Query:
    """What to list from a store.

    Attributes:
        prefix: Only names starting with this (a "directory", or a single object name)
        delimiter: Most likely "/", rolls deeper names up into folders
        cursor: Opaque bookmark where the next page resumes, "" for the start
        page_size: Entries per backend call, 0 for the store default
        start_offset: Drop names sorting before this (inclusive bound)
        end_offset: Drop names sorting at or after this (exclusive bound)
        filters: Applied in order to each fetched page
    """

    prefix: str = ""
    delimiter: str = ""
    cursor: str = ""
    page_size: int = 0
    start_offset: str = ""
    end_offset: str = ""
    filters: List[ObjectFilter] = field(default_factory=list)

    @classmethod
    def all(cls) -> "Query":
        """Query for every object in the store."""
        return cls()

    @classmethod
    def for_prefix(cls, prefix: str) -> "Query":
        """Query for the objects under ``prefix``."""
        return cls(prefix=prefix)

    @classmethod
    def for_folders(cls, folder_path: str) -> "Query":
        """Query for the folders directly under ``folder_path``."""
        return cls(prefix=folder_path, delimiter="/")

    def add_filter(self, f: ObjectFilter) -> "Query":
        self.filters.append(f)
        return self

    def sorted(self) -> "Query":
        """Add the name sort to the filter chain.

        Sorting only holds up to the next filter, so call this last when
        building a query.
        """
        return self.add_filter(sort_filter)

    def copy(self) -> "Query":
        return replace(self, filters=list(self.filters))

    def apply_filters(self, objects: Sequence["StoreObject"]) -> List["StoreObject"]:
        """Run offsets then the filter chain over one page of objects."""
        result = list(objects)
        if self.start_offset:
            result = [o for o in result if o.name >= self.start_offset]
        if self.end_offset:
            result = [o for o in result if o.name < self.end_offset]
        for f in self.filters:
            result = list(f(result))
        return result


@dataclass
class ObjectsResponse:
    """One listing result: objects in order plus the token for the next page."""

    objects: List["StoreObject"] = field(default_factory=list)
    next_token: str = ""

    @property
    def is_final(self) -> bool:
        return self.next_token == ""

    def __len__(self) -> int:
        return len(self.objects)
