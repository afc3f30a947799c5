"""Region data models."""

from enum import Enum
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict


class PlaceKind(str, Enum):
    """Kind of place extracted and published in a run."""

    LOCALITY = "locality"
    AREA = "area"

    @property
    def placetypes(self) -> tuple[str, ...]:
        """WhosOnFirst placetypes belonging to this kind."""
        if self is PlaceKind.LOCALITY:
            return ("locality",)
        return ("region", "county")

    @property
    def mapping_table(self) -> str:
        """Name of the dedup mapping table for this kind."""
        return f"{self.value}_cids"

    @property
    def id_column(self) -> str:
        """Name of the region id column in the mapping table."""
        return f"{self.value}_id"


class Region(BaseModel):
    """A place with a bounding box, read from the catalog."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    country: str
    placetype: str
    latitude: float
    longitude: float
    min_longitude: float
    min_latitude: float
    max_longitude: float
    max_latitude: float

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "Region":
        """Create a Region from a catalog row in SELECT column order."""
        return cls(
            id=row[0],
            name=row[1],
            country=row[2],
            placetype=row[3],
            latitude=row[4],
            longitude=row[5],
            min_longitude=row[6],
            min_latitude=row[7],
            max_longitude=row[8],
            max_latitude=row[9],
        )

    @property
    def bbox(self) -> str:
        """Bounding box as min_lon,min_lat,max_lon,max_lat."""
        return f"{self.min_longitude},{self.min_latitude},{self.max_longitude},{self.max_latitude}"
