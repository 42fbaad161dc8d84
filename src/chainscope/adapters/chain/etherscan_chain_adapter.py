import logging
import time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from chainscope.config.settings import (
    ETHERSCAN_API_KEY,
    ETHERSCAN_BASE_URL,
    ETHERSCAN_REQUESTS_PER_SEC,
    ETHERSCAN_TIMEOUT_SEC,
    ETHERSCAN_MAX_RETRIES,
    ETHERSCAN_PAGE_SIZE,
    ETHERSCAN_MAX_PAGES,
    NETWORK_CHAIN_IDS,
)

from chainscope.adapters.chain.rate_limiter import SimpleRateLimiter, backoff_sleep
from chainscope.core.errors import ProviderError, RateLimitError
from chainscope.core.models import TX_ERC20, TX_NATIVE, DateRange, Transfer
from chainscope.ports.chain_data_port import ChainDataPort
from chainscope.core.dto import RawTokentxRow, RawTxlistRow

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal("1000000000000000000")
LATEST_BLOCK = 99999999

_EMPTY_RESULT_HINTS = ("no transactions found", "no records found")
_RATE_LIMIT_HINTS = ("rate limit", "max calls per sec")


class EtherscanChainAdapter(ChainDataPort):

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        requests_per_sec: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else ETHERSCAN_API_KEY
        self._base_url = ETHERSCAN_BASE_URL
        self._timeout = ETHERSCAN_TIMEOUT_SEC
        self._max_retries = ETHERSCAN_MAX_RETRIES
        self._page_size = ETHERSCAN_PAGE_SIZE
        self._max_pages = max_pages if max_pages is not None else ETHERSCAN_MAX_PAGES

        self._rl = SimpleRateLimiter(requests_per_sec or ETHERSCAN_REQUESTS_PER_SEC)
        self._session = session or requests.Session()

    # ---------- internal ----------

    def _call(self, chainid: int, params: Dict[str, Any]) -> Dict[str, Any]:
        req = dict(params)
        req["apikey"] = self._api_key
        req["chainid"] = str(chainid)

        last_err: Optional[Exception] = None

        for attempt in range(self._max_retries):
            self._rl.wait()
            try:
                resp = self._session.get(
                    self._base_url,
                    params=req,
                    timeout=self._timeout,
                )
                resp.raise_for_status()
                data = resp.json()
            except (requests.RequestException, ValueError) as e:
                last_err = e
                logger.debug("etherscan attempt %d failed: %s", attempt + 1, e)
                backoff_sleep(attempt)
                continue

            if not isinstance(data, dict):
                raise ProviderError(f"Malformed Etherscan response: {data!r}")

            status = str(data.get("status", "1"))
            message = str(data.get("message", "OK"))

            if status == "0":
                text = f"{message} {data.get('result')}".lower()
                if any(h in text for h in _EMPTY_RESULT_HINTS):
                    return data
                if any(h in text for h in _RATE_LIMIT_HINTS):
                    last_err = RateLimitError(str(data.get("result") or message))
                    logger.debug("etherscan rate limited (attempt %d)", attempt + 1)
                    backoff_sleep(attempt)
                    continue
                # bad key, bad params, ... retrying will not help
                raise ProviderError(f"Etherscan error: {message}: {data.get('result')}")

            return data

        if isinstance(last_err, RateLimitError):
            raise last_err
        raise ProviderError(f"Etherscan failed after retries: {last_err}")

    @staticmethod
    def _list_result(data: Dict[str, Any]) -> list:
        res = data.get("result")
        return res if isinstance(res, list) else []

    @staticmethod
    def _chain_id(network: str) -> int:
        try:
            return NETWORK_CHAIN_IDS[network.upper()]
        except KeyError:
            raise ProviderError(
                f"Unsupported network {network!r}; known: {sorted(NETWORK_CHAIN_IDS)}"
            ) from None

    def _block_window(self, chainid: int, date_range: Optional[DateRange]) -> Tuple[int, int]:
        start_block, end_block = 0, LATEST_BLOCK
        if date_range is None:
            return start_block, end_block

        start_ts = date_range.start_ts()
        end_ts = date_range.end_ts()
        if start_ts is not None:
            start_block = self.get_block_number_by_time(chainid, start_ts, closest="after")
        if end_ts is not None and end_ts < int(time.time()):
            end_block = self.get_block_number_by_time(chainid, end_ts, closest="before")
        return start_block, end_block

    # ---------- port method ----------

    def fetch_address_history(
        self,
        address: str,
        network: str,
        date_range: Optional[DateRange] = None,
    ) -> List[Transfer]:
        chainid = self._chain_id(network)
        start_block, end_block = self._block_window(chainid, date_range)

        out: List[Transfer] = []
        for raw in self.iter_normal_txs(chainid, address, start_block, end_block):
            # plain contract calls move no value
            if raw.is_error or raw.value_wei <= 0:
                continue
            out.append(_native_transfer(raw))

        for raw in self.iter_erc20_transfers(chainid, address, start_block, end_block):
            out.append(_erc20_transfer(raw))

        if date_range is not None:
            out = [t for t in out if date_range.contains(t.timestamp)]
        return out

    # ---------- raw endpoints ----------

    def get_block_number_by_time(self, chainid: int, unix_ts: int, closest: str = "before") -> int:
        data = self._call(chainid, {
            "module": "block",
            "action": "getblocknobytime",
            "timestamp": str(int(unix_ts)),
            "closest": closest,
        })
        try:
            return int(data["result"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Invalid block result: {data}") from e

    def _paged(self, chainid: int, params: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
        for page in range(1, self._max_pages + 1):
            data = self._call(chainid, dict(params, page=page, offset=self._page_size))
            rows = self._list_result(data)
            yield from rows
            if len(rows) < self._page_size:
                return
        logger.info(
            "etherscan %s for %s truncated at %d pages",
            params.get("action"), params.get("address"), self._max_pages,
        )

    def iter_normal_txs(
        self,
        chainid: int,
        address: str,
        start_block: int,
        end_block: int,
        sort: str = "asc",
    ) -> Iterable[RawTxlistRow]:
        rows = self._paged(chainid, {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": start_block,
            "endblock": end_block,
            "sort": sort,
        })
        for r in rows:
            try:
                yield RawTxlistRow(
                    tx_hash=r.get("hash", ""),
                    block_number=int(r.get("blockNumber", 0)),
                    timestamp=int(r.get("timeStamp", 0)),
                    from_address=r.get("from") or "",
                    to_address=r.get("to") or "",
                    value_wei=int(r.get("value", 0)),
                    gas_used=int(r.get("gasUsed") or 0),
                    gas_price_wei=int(r.get("gasPrice") or 0),
                    method=_method_name(r),
                    is_error=str(r.get("isError", "0")) == "1",
                )
            except (TypeError, ValueError) as e:
                raise ProviderError(f"Malformed txlist row: {r}") from e

    def iter_erc20_transfers(
        self,
        chainid: int,
        address: str,
        start_block: int,
        end_block: int,
        sort: str = "asc",
    ) -> Iterable[RawTokentxRow]:
        rows = self._paged(chainid, {
            "module": "account",
            "action": "tokentx",
            "address": address,
            "startblock": start_block,
            "endblock": end_block,
            "sort": sort,
        })
        for r in rows:
            dec = r.get("tokenDecimal")
            log_index = r.get("logIndex")
            try:
                yield RawTokentxRow(
                    tx_hash=r.get("hash", ""),
                    block_number=int(r.get("blockNumber", 0)),
                    timestamp=int(r.get("timeStamp", 0)),
                    from_address=r.get("from") or "",
                    to_address=r.get("to") or "",
                    token_address=(r.get("contractAddress") or "").lower(),
                    amount_raw=int(r.get("value", 0)),
                    log_index=int(log_index) if log_index not in (None, "") else None,
                    token_symbol=r.get("tokenSymbol") or None,
                    token_decimals=int(dec) if dec and str(dec).isdigit() else None,
                    method=_method_name(r),
                )
            except (TypeError, ValueError) as e:
                raise ProviderError(f"Malformed tokentx row: {r}") from e


def _method_name(row: Dict[str, Any]) -> Optional[str]:
    fn = row.get("functionName") or ""
    if fn:
        return fn.split("(", 1)[0] or None
    return row.get("methodId") or None


def _native_transfer(raw: RawTxlistRow) -> Transfer:
    fee = Decimal(raw.gas_used) * Decimal(raw.gas_price_wei) / WEI_PER_ETH
    return Transfer(
        id=raw.tx_hash,
        hash=raw.tx_hash,
        from_address=raw.from_address,
        to_address=raw.to_address,
        value=Decimal(raw.value_wei) / WEI_PER_ETH,
        timestamp=raw.timestamp,
        type=TX_NATIVE,
        method=raw.method,
        block=raw.block_number,
        fee=fee,
    )


def _erc20_transfer(raw: RawTokentxRow) -> Transfer:
    amount = Decimal(raw.amount_raw)
    if raw.token_decimals is not None:
        # token amount normalization
        amount = amount / (Decimal(10) ** Decimal(raw.token_decimals))

    uid = raw.tx_hash if raw.log_index is None else f"{raw.tx_hash}-{raw.log_index}"
    return Transfer(
        id=uid,
        hash=raw.tx_hash,
        from_address=raw.from_address,
        to_address=raw.to_address,
        value=amount,
        timestamp=raw.timestamp,
        type=TX_ERC20,
        token=raw.token_symbol or raw.token_address or None,
        method=raw.method,
        block=raw.block_number,
    )
