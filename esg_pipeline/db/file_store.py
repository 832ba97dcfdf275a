"""File-based stores for raw model responses and extracted records."""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from ..schemas.records import ExtractedRecord


class RawResponseStore:
    """Writes raw model text to <output>/raw_responses/<id>_raw_response.txt.

    Debug persistence only: a failed write is logged and never raised, so it
    can not turn a successful extraction into a failure.
    """

    def __init__(self, output_dir: str | Path, logger=None):
        self.directory = Path(output_dir) / "raw_responses"
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, record_id: str) -> Path:
        return self.directory / f"{record_id}_raw_response.txt"

    def save_raw(self, record_id: str, text: str) -> Optional[Path]:
        path = self.path_for(record_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(text or "", encoding="utf-8")
        except OSError as e:
            self.logger.warning(f"Could not save raw response for {record_id}: {e}")
            return None
        return path


class RecordStore:
    """Reads and writes <output>/extracted/<id>_extracted.json."""

    def __init__(self, output_dir: str | Path, logger=None):
        self.directory = Path(output_dir) / "extracted"
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, record_id: str) -> Path:
        return self.directory / f"{record_id}_extracted.json"

    def save_extracted_record(self, record_id: str, record: ExtractedRecord) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(record_id)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2, ensure_ascii=False)
        return path

    def load(self, record_id: str) -> Optional[ExtractedRecord]:
        path = self.path_for(record_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def load_all(self) -> Dict[str, ExtractedRecord]:
        """Load every extracted record keyed by record id, sorted by id."""
        records: Dict[str, ExtractedRecord] = {}
        if not self.directory.exists():
            return records
        for path in sorted(self.directory.glob("*_extracted.json")):
            record_id = path.name[: -len("_extracted.json")]
            try:
                with open(path, encoding="utf-8") as f:
                    records[record_id] = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                self.logger.warning(f"Skipping unreadable record file {path.name}: {e}")
        return records
