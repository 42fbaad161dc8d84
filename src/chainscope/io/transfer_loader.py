from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List

from chainscope.core.errors import LoaderError
from chainscope.core.models import AddressLabel, TX_ERC20, TX_NATIVE, TraceSession, Transfer
from chainscope.io.schemas import (
    session_from_dict,
    session_to_dict,
    transfer_from_dict,
    transfer_to_dict,
)


def _read_rows(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise LoaderError(f"file not found: {path}")

    suffix = p.suffix.lower()
    if suffix == ".json":
        try:
            with p.open(encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise LoaderError(f"invalid JSON in {path}: {e}") from e
        except UnicodeDecodeError as e:
            raise LoaderError(f"{path} is not UTF-8 text: {e}") from e
    if suffix == ".csv":
        try:
            with p.open(newline="", encoding="utf-8") as f:
                return list(csv.DictReader(f))
        except UnicodeDecodeError as e:
            raise LoaderError(f"{path} is not UTF-8 text: {e}") from e
        except csv.Error as e:
            raise LoaderError(f"invalid CSV in {path}: {e}") from e
    raise LoaderError(f"unsupported file type {suffix!r} (expected .json or .csv)")


def load_transfers(path: str) -> List[Transfer]:
    """
    A JSON list of transfer objects, a JSON object of the form
    {"native": [...], "erc20": [...]}, or a CSV with one transfer per row.
    """
    data = _read_rows(path)

    rows: List[tuple] = []
    if isinstance(data, dict):
        for tx_type in (TX_NATIVE, TX_ERC20):
            for row in data.get(tx_type) or []:
                rows.append((row, tx_type))
    elif isinstance(data, list):
        rows = [(row, TX_NATIVE) for row in data]
    else:
        raise LoaderError(f"unexpected top-level JSON in {path}")

    out: List[Transfer] = []
    for i, (row, default_type) in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise LoaderError(f"{path}: row {i} is not an object")
        try:
            out.append(transfer_from_dict(row, default_type=default_type))
        except LoaderError as e:
            raise LoaderError(f"{path}: row {i}: {e}") from e
    return out


def save_transfers(transfers: Iterable[Transfer], out_dir: str, filename: str = "transfers.json") -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename
    with out_path.open("w", encoding="utf-8") as f:
        json.dump([transfer_to_dict(t) for t in transfers], f, indent=2)

    return str(out_path)


def load_labels(path: str) -> List[AddressLabel]:
    data = _read_rows(path)
    if not isinstance(data, list):
        raise LoaderError(f"{path}: expected a list of labels")

    out: List[AddressLabel] = []
    for row in data:
        if not isinstance(row, dict):
            continue
        addr = str(row.get("address") or "").strip()
        if not addr:
            continue
        out.append(
            AddressLabel(
                address=addr,
                label=str(row.get("label") or "").strip(),
                tag_type=str(row.get("tag_type") or "general").strip().lower(),
            )
        )
    return out


def load_session(path: str) -> TraceSession:
    """Missing file = fresh session."""
    p = Path(path)
    if not p.exists():
        return TraceSession()
    data: Dict[str, Any] = _read_rows(path)
    if not isinstance(data, dict):
        raise LoaderError(f"{path}: expected a JSON object")
    return session_from_dict(data)


def save_session(session: TraceSession, path: str) -> str:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(session_to_dict(session), f, indent=2)
    return str(p)
