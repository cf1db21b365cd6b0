"""Fee data from rippled's ``fee`` command, and the fee a transaction should carry."""

from dataclasses import dataclass

OWNER_RESERVE_DROPS = 2_000_000


@dataclass
class FeeInfo:
    """Current fee escalation state. All fee values are in drops."""

    expected_ledger_size: int
    current_ledger_size: int
    current_queue_size: int
    max_queue_size: int
    base_fee: int
    median_fee: int
    minimum_fee: int
    open_ledger_fee: int
    ledger_current_index: int

    @classmethod
    def from_fee_result(cls, result: dict) -> "FeeInfo":
        """Parse the 'result' field of a Fee response."""
        drops = result["drops"]
        return cls(
            expected_ledger_size=int(result["expected_ledger_size"]),
            current_ledger_size=int(result["current_ledger_size"]),
            current_queue_size=int(result["current_queue_size"]),
            max_queue_size=int(result["max_queue_size"]),
            base_fee=int(drops["base_fee"]),
            median_fee=int(drops["median_fee"]),
            minimum_fee=int(drops["minimum_fee"]),
            open_ledger_fee=int(drops["open_ledger_fee"]),
            ledger_current_index=int(result["ledger_current_index"]),
        )

    @property
    def queue_full(self) -> bool:
        return self.current_queue_size >= self.max_queue_size

    def fee_for(self, transaction_type: str, inner_count: int = 0) -> int:
        """Drops to put in the Fee field.

        Pays the open ledger fee so the transaction skips the queue. A Batch
        pays two owner reserves plus one base fee per inner transaction.
        """
        fee = max(self.base_fee, self.open_ledger_fee)
        if transaction_type == "Batch":
            return 2 * OWNER_RESERVE_DROPS + fee * inner_count
        return fee
