"""Finance gateway client for deal verification"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import quote
import httpx
import logging

from app.core.config import settings
from app.core.exceptions import VerificationFailure

logger = logging.getLogger(__name__)

SETTLED_STATUSES = {"paid", "captured", "settled"}

SOURCE_EXTERNAL = "external"
SOURCE_STUB = "stub"

@dataclass
class GatewayResult:
    verified: bool
    source: Optional[str] = None
    reason: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None

class VerificationGatewayClient:
    """
    Confirms a deal's transaction against the finance system

    Modes:
        external: FINANCE_API_URL is set; the remote record must match currency,
            amount exactly and be in a settled status.
        stub: FINANCE_GATEWAY_STUB_MODE is explicitly enabled and no URL is set;
            every well-formed request is approved.
        unconfigured: neither; nothing is approved.

    Timeouts and transport errors raise VerificationFailure, which is retryable.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        stub_mode: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.FINANCE_API_URL) or None
        self.token = token if token is not None else settings.FINANCE_API_TOKEN
        self.timeout = timeout if timeout is not None else settings.FINANCE_API_TIMEOUT_SECONDS
        self.stub_mode = stub_mode if stub_mode is not None else settings.FINANCE_GATEWAY_STUB_MODE
        self._transport = transport

        if self.base_url:
            self.base_url = self.base_url.rstrip("/")
        elif self.stub_mode:
            logger.warning(
                "Finance gateway running in STUB mode: every deal verification will succeed. "
                "Do not use this configuration with real money."
            )
        else:
            logger.warning("Finance gateway is not configured; deal verification is disabled")

    @property
    def mode(self) -> str:
        if self.base_url:
            return SOURCE_EXTERNAL
        if self.stub_mode:
            return SOURCE_STUB
        return "unconfigured"

    async def verify_transaction(
        self,
        transaction_id: Optional[str],
        amount: Any,
        currency: Optional[str] = None
    ) -> GatewayResult:
        """Verify a transaction; mismatches are results, transport problems raise"""
        expected_amount = _to_decimal(amount)
        currency = (currency or settings.DEFAULT_CURRENCY).upper()

        if not transaction_id or expected_amount is None or expected_amount <= 0:
            return GatewayResult(verified=False, reason="missing transaction information or invalid amount")

        if self.base_url:
            return await self._verify_external(transaction_id, expected_amount, currency)

        if self.stub_mode:
            return GatewayResult(
                verified=True,
                source=SOURCE_STUB,
                payload={
                    "transactionId": transaction_id,
                    "amount": str(expected_amount),
                    "currency": currency,
                    "status": "paid",
                },
            )

        return GatewayResult(verified=False, reason="finance gateway not configured")

    async def _verify_external(
        self,
        transaction_id: str,
        expected_amount: Decimal,
        currency: str
    ) -> GatewayResult:
        url = f"{self.base_url}/transactions/{quote(transaction_id, safe='')}"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Finance gateway timed out for transaction {transaction_id}")
            raise VerificationFailure("finance gateway timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Finance gateway request failed: {str(e)}")
            raise VerificationFailure("finance gateway query failed") from e

        if response.status_code == 404:
            return GatewayResult(verified=False, source=SOURCE_EXTERNAL, reason="transaction not found")
        if response.status_code >= 400:
            logger.error(f"Finance gateway returned HTTP {response.status_code}")
            raise VerificationFailure(f"finance gateway returned HTTP {response.status_code}")

        try:
            tx = response.json() or {}
        except ValueError as e:
            raise VerificationFailure("finance gateway returned malformed data") from e

        remote_currency = str(tx.get("currency") or "").upper()
        remote_amount = _to_decimal(tx.get("amount"))
        remote_status = str(tx.get("status") or "").lower()

        if remote_currency != currency:
            reason = "currency mismatch"
        elif remote_amount is None or remote_amount != expected_amount:
            reason = "amount mismatch"
        elif remote_status not in SETTLED_STATUSES:
            reason = f"transaction not settled (status: {remote_status or 'unknown'})"
        else:
            reason = None

        return GatewayResult(
            verified=reason is None,
            source=SOURCE_EXTERNAL,
            reason=reason,
            payload=tx,
        )
