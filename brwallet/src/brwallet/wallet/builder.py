"""
Unsigned transaction construction from the ledger's UTXO set.
"""

from __future__ import annotations

from brcore.constants import (
    MIN_FEE_PER_KB,
    TX_FEE_PER_KB,
    TX_MAX_SIZE,
    TX_MIN_OUTPUT_AMOUNT,
    TX_OUTPUT_SIZE,
)
from brcore.transaction import Transaction
from loguru import logger

from brwallet.wallet.address import address_to_scriptpubkey
from brwallet.wallet.ledger import WalletLedger
from brwallet.wallet.models import CoinSelection

# child-pays-for-parent only covers small parents
CPFP_MAX_PARENT_INPUTS = 10
CPFP_MAX_PARENT_OUTPUTS = 10


class InsufficientFundsError(ValueError):
    pass


class TransactionBuilder:
    """
    Builds payments with a linear per-kilobyte fee.

    Coin selection walks the ledger's UTXOs oldest first and stops as soon as
    the inputs cover the payments plus fee, either exactly or with enough left
    over for a change output above the dust limit.
    """

    def __init__(
        self,
        ledger: WalletLedger,
        fee_per_kb: int = TX_FEE_PER_KB,
        allow_unconfirmed: bool = False,
    ):
        self.ledger = ledger
        self.fee_per_kb = fee_per_kb
        self.allow_unconfirmed = allow_unconfirmed

    def fee_for_tx_size(self, size: int) -> int:
        """fee = ceil(size / 1000) * fee_per_kb"""
        return ((size + 999) // 1000) * self.fee_per_kb

    @property
    def min_output_amount(self) -> int:
        """Smallest output worth creating at the current fee rate"""
        amount = (TX_MIN_OUTPUT_AMOUNT * self.fee_per_kb + MIN_FEE_PER_KB - 1) // MIN_FEE_PER_KB
        return max(amount, TX_MIN_OUTPUT_AMOUNT)

    def transaction_for(self, amount: int, address: str, include_fee: bool = True) -> Transaction:
        script = address_to_scriptpubkey(address, self.ledger.network)
        return self.transaction_for_amounts([amount], [script], include_fee)

    def transaction_for_amounts(
        self, amounts: list[int], scripts: list[bytes], include_fee: bool = True
    ) -> Transaction:
        """
        Unsigned transaction paying each script its amount, in order, followed
        by a change output when the remainder is at least min_output_amount.
        """
        tx, _ = self._build(amounts, scripts, include_fee)
        return tx

    def select_coins(
        self, amounts: list[int], scripts: list[bytes], include_fee: bool = True
    ) -> CoinSelection:
        _, selection = self._build(amounts, scripts, include_fee)
        return selection

    def _spendable(self, tx: Transaction) -> bool:
        if self.allow_unconfirmed:
            return True
        if not self.ledger.transaction_is_valid(tx):
            return False
        return tx.is_confirmed or self.ledger.transaction_is_verified(tx)

    def _build(
        self, amounts: list[int], scripts: list[bytes], include_fee: bool
    ) -> tuple[Transaction, CoinSelection]:
        if not amounts:
            raise ValueError("At least one output is required")
        if len(amounts) != len(scripts):
            raise ValueError(f"Got {len(amounts)} amounts for {len(scripts)} scripts")

        tx = Transaction()
        for amount, script in zip(amounts, scripts):
            if amount <= 0:
                raise ValueError(f"Output amount must be positive: {amount}")
            if not script:
                raise ValueError("Output script is empty")
            tx.add_output(amount, script)

        amount = sum(amounts)
        min_amount = self.min_output_amount
        balance = 0
        fee = 0
        cpfp_size = 0
        selected = []

        with self.ledger.lock:
            for utxo in self.ledger.unspent_outputs:
                prev = self.ledger.transaction_for_hash(utxo.tx_hash)
                if prev is None or not self._spendable(prev):
                    continue

                tx.add_input(utxo.tx_hash, utxo.index, prev.outputs[utxo.index].script)
                if tx.size + TX_OUTPUT_SIZE > TX_MAX_SIZE:
                    raise ValueError(f"Transaction would exceed {TX_MAX_SIZE} bytes")

                selected.append(utxo)
                balance += prev.outputs[utxo.index].amount

                if (
                    not prev.is_confirmed
                    and len(prev.inputs) <= CPFP_MAX_PARENT_INPUTS
                    and len(prev.outputs) <= CPFP_MAX_PARENT_OUTPUTS
                    and self.ledger.amount_sent_by_transaction(prev) == 0
                ):
                    cpfp_size += prev.size

                if include_fee:
                    # assume a change output will be added
                    fee = self.fee_for_tx_size(tx.size + TX_OUTPUT_SIZE + cpfp_size)

                if balance == amount + fee or balance >= amount + fee + min_amount:
                    break

            if balance < amount + fee:
                raise InsufficientFundsError(
                    f"Insufficient funds: need {amount + fee} sats, have {balance} sats"
                )

            change = balance - amount - fee
            if change >= min_amount:
                change_address = self.ledger.change_address
                if change_address is None:
                    raise ValueError("No change address available")
                tx.add_output(change, address_to_scriptpubkey(change_address, self.ledger.network))
            else:
                change = 0

        selection = CoinSelection(
            utxos=selected,
            total_value=balance,
            change_value=change,
            fee=balance - amount - change,
        )
        logger.debug(
            f"Selected {len(selected)} UTXOs: total={balance}, fee={selection.fee}, change={change}"
        )
        return tx, selection
