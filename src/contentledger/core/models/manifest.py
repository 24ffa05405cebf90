"""
Manifest model: which raw batch files have already been consolidated.
"""

from pydantic import BaseModel, ConfigDict, Field


class Manifest(BaseModel):
    """
    Processed-file manifest.

    Attributes:
        processed: raw filename -> content signature at the time it was merged.
            The signature is ``"<size>-<mtime_ns>"`` or ``"sha256:<hex>"``.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "processed": {
                    "ai-run-20251104T180924.jsonl": "48213-1762279764123456789",
                    "rejects-20251104T180924.jsonl": "sha256:9f2c...",
                }
            }
        }
    )

    processed: dict[str, str] = Field(default_factory=dict)

    def is_processed(self, filename: str, signature: str) -> bool:
        return self.processed.get(filename) == signature

    def mark(self, filename: str, signature: str) -> None:
        self.processed[filename] = signature
