from dataclasses import dataclass, field
from pathlib import Path

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@dataclass(frozen=True)
class IngestionConfig:
    """
    Configuration for the CSV ingestion step.

    Raw exports are read from ``raw_data_dir`` (one CSV per collection) and the
    normalised tables are written to ``processed_data_dir`` under the same
    collection names, which is where the dataset store loads them from.
    """

    raw_data_dir: Path = _DATA_DIR / "raw"
    processed_data_dir: Path = _DATA_DIR / "processed"
    raw_filenames: dict[str, str] = field(
        default_factory=lambda: {
            "parks": "parks.csv",
            "species": "species.csv",
            "trails": "trails.csv",
            "listings": "airbnb.csv",
        }
    )

    def raw_path(self, collection: str) -> Path:
        return self.raw_data_dir / self.raw_filenames[collection]

    def processed_path(self, collection: str) -> Path:
        return self.processed_data_dir / f"{collection}.csv"


DEFAULT_INGESTION_CONFIG = IngestionConfig()
