from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..errors import ExportError

logger = logging.getLogger(__name__)

FORMATS = {"json": ".json", "geojson": ".geojson", "csv": ".csv"}


def _select(records: List[Dict[str, object]], selectors: Optional[Sequence[str]]) -> List[Dict[str, object]]:
    if not selectors:
        return [dict(r) for r in records]
    known = set().union(*(r.keys() for r in records)) if records else set(selectors)
    missing = [s for s in selectors if s not in known]
    if missing:
        raise ExportError(f"Unknown export columns {missing}; available: {sorted(known)}")
    return [{s: r.get(s) for s in selectors} for r in records]


def export_table(
    records: Iterable[Dict[str, object]],
    path,
    selectors: Optional[Sequence[str]] = None,
    file_format: str = "json",
) -> str:
    """Write zonal records to ``path`` and return a ``file://`` URL to it.

    ``json``/``geojson`` write a FeatureCollection whose features carry the
    selected columns as properties and no geometry; ``csv`` writes one row
    per record with nested values JSON-encoded.

    Raises
    ------
    ExportError
        On an unknown format or column, or when the file cannot be written.
    """
    if file_format not in FORMATS:
        raise ExportError(f"Unsupported export format {file_format!r}; use one of {sorted(FORMATS)}")
    path = Path(path)
    if not path.suffix:
        path = path.with_suffix(FORMATS[file_format])
    rows = _select(list(records), selectors)

    # written next to the target and moved into place only once complete
    partial = path.with_name(path.name + ".part")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if file_format == "csv":
            frame = pd.DataFrame(rows, columns=list(selectors) if selectors else None)
            for col in frame.columns:
                if frame[col].map(lambda v: isinstance(v, (list, dict))).any():
                    frame[col] = frame[col].map(json.dumps)
            frame.to_csv(partial, index=False)
        else:
            collection = {
                "type": "FeatureCollection",
                "features": [
                    {"type": "Feature", "id": str(i), "geometry": None, "properties": row}
                    for i, row in enumerate(rows)
                ],
            }
            text = json.dumps(collection, indent=2, ensure_ascii=False, allow_nan=False)
            partial.write_text(text, encoding="utf-8")
        partial.replace(path)
    except (OSError, TypeError, ValueError) as exc:
        if partial.exists():
            partial.unlink()
        raise ExportError(f"Export to {path} failed: {exc}") from exc

    url = path.resolve().as_uri()
    logger.info("Exported %d records to %s", len(rows), url)
    return url
