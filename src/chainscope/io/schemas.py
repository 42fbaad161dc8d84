from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from chainscope.core.errors import LoaderError
from chainscope.core.models import (
    TX_NATIVE,
    TX_TYPES,
    CrawlResult,
    Topology,
    TraceSession,
    Transfer,
)


def _dec_to_str(x: Decimal) -> str:
    # keep as string for JSON precision safety
    return format(x, "f")


def _dec(val: Any, field: str) -> Decimal:
    try:
        d = Decimal(str(val).replace(",", "").strip())
    except (InvalidOperation, ValueError) as e:
        raise LoaderError(f"invalid {field}: {val!r}") from e
    if not d.is_finite():
        raise LoaderError(f"invalid {field}: {val!r}")
    return d


def parse_timestamp(val: Any) -> int:
    """
    Unix seconds (int/float/numeric string) or an ISO-8601 string.
    Naive ISO datetimes are taken as UTC.
    """
    if isinstance(val, int):
        return int(val)
    if isinstance(val, float):
        return _finite_seconds(val, val)
    s = str(val or "").strip()
    if not s:
        raise LoaderError("missing timestamp")
    try:
        seconds = float(s)
    except ValueError:
        pass
    else:
        return _finite_seconds(seconds, val)
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as e:
        raise LoaderError(f"invalid timestamp: {val!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _finite_seconds(seconds: float, raw: Any) -> int:
    # inf / nan / 1e400 from JSON
    if not math.isfinite(seconds):
        raise LoaderError(f"invalid timestamp: {raw!r}")
    return int(seconds)


def _opt_str(val: Any) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def _opt_int(val: Any, field: str) -> Optional[int]:
    if val in (None, ""):
        return None
    try:
        return int(val)
    except (TypeError, ValueError) as e:
        raise LoaderError(f"invalid {field}: {val!r}") from e


def transfer_from_dict(d: Dict[str, Any], default_type: str = TX_NATIVE) -> Transfer:
    tx_type = str(d.get("type") or default_type).strip().lower()
    if tx_type not in TX_TYPES:
        raise LoaderError(f"unknown transfer type: {tx_type!r}")

    tx_hash = str(d.get("hash") or d.get("tx_hash") or "").strip()
    value = _dec(d.get("value") if d.get("value") not in (None, "") else 0, "value")
    if value < 0:
        raise LoaderError(f"negative value in transfer {tx_hash or d.get('id')!r}")

    block = d.get("block") if d.get("block") is not None else d.get("block_number")
    fee = d.get("fee")

    return Transfer(
        id=str(d.get("id") or tx_hash).strip(),
        hash=tx_hash,
        from_address=_opt_str(d.get("from") or d.get("from_address")),
        to_address=_opt_str(d.get("to") or d.get("to_address")),
        value=value,
        timestamp=parse_timestamp(d.get("timestamp")),
        type=tx_type,
        token=_opt_str(d.get("token")),
        method=_opt_str(d.get("method")),
        block=_opt_int(block, "block"),
        fee=_dec(fee, "fee") if fee not in (None, "") else None,
    )


def transfer_to_dict(t: Transfer) -> Dict[str, Any]:
    return {
        "id": t.id,
        "hash": t.hash,
        "from": t.from_address,
        "to": t.to_address,
        "value": _dec_to_str(t.value),
        "token": t.token,
        "timestamp": t.timestamp,
        "type": t.type,
        "method": t.method,
        "block": t.block,
        "fee": _dec_to_str(t.fee) if t.fee is not None else None,
    }


def topology_to_dict(topo: Topology) -> Dict[str, Any]:
    return {
        "nodes": [
            {
                "id": n.id,
                "balance": _dec_to_str(n.balance),
                "radius": round(topo.radius(n.balance), 3),
                "type": n.type,
                "label": n.label,
                "group_id": n.group_id,
                "group_key": n.group_key,
                "group_size": n.group_size,
                "group_color": n.group_color,
                "hop": n.hop,
            }
            for n in topo.nodes
        ],
        "links": [
            {
                "source": l.source,
                "target": l.target,
                "value": _dec_to_str(l.value),
                "count": l.count,
                "is_bidirectional": l.is_bidirectional,
            }
            for l in topo.links
        ],
    }


def session_to_dict(session: TraceSession) -> Dict[str, Any]:
    return {"traced": sorted(session.traced)}


def session_from_dict(d: Dict[str, Any]) -> TraceSession:
    traced = d.get("traced") or []
    if not isinstance(traced, list):
        raise LoaderError("session 'traced' must be a list")
    return TraceSession().with_traced(str(a) for a in traced if a)


def crawl_result_to_dict(result: CrawlResult) -> Dict[str, Any]:
    return {
        "status": result.status,
        "transfers": len(result.transfers),
        "ingested": result.ingested,
        "frontier": list(result.frontier),
        "layers": [
            {
                "layer": r.layer,
                "queried": r.queried,
                "succeeded": r.succeeded,
                "failed": r.failed,
                "transfers": r.transfers,
                "discovered": len(r.discovered),
            }
            for r in result.layers
        ],
    }
