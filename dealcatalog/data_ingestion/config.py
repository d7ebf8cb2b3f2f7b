from dataclasses import dataclass


@dataclass(frozen=True)
class IngestionConfig:
    """
    Configuration for the bulk restaurant upload pipeline.
    """

    csv_media_type: str = "text/csv"
    json_media_type: str = "application/json"
    required_fields: tuple[str, ...] = ("name", "address")
    # Rows per pandas chunk when streaming CSV uploads.
    csv_chunk_size: int = 500
    drain_chunk_bytes: int = 64 * 1024
    # utf-8-sig also accepts files saved with a byte order mark.
    encoding: str = "utf-8-sig"
    # Widest CSV record accepted; wider records fail the whole upload.
    csv_max_fields: int = 256

    @property
    def allowed_media_types(self) -> tuple[str, str]:
        return (self.csv_media_type, self.json_media_type)


DEFAULT_INGESTION_CONFIG = IngestionConfig()
