from dataclasses import dataclass
from typing import Optional


# One row of the explorer's account/txlist endpoint, integers still raw.
@dataclass(frozen=True)
class RawTxlistRow:
    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: str
    value_wei: int
    gas_used: int = 0
    gas_price_wei: int = 0
    method: Optional[str] = None
    is_error: bool = False


# account/tokentx row; one tx hash can carry several of these (log_index).
@dataclass(frozen=True)
class RawTokentxRow:
    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: str
    token_address: str
    amount_raw: int          # before decimals
    log_index: Optional[int] = None
    token_symbol: Optional[str] = None
    token_decimals: Optional[int] = None
    method: Optional[str] = None
