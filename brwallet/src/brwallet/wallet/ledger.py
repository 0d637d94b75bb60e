"""
Wallet ledger: addresses, registered transactions, UTXO set and balance.

All state is guarded by one re-entrant lock. The UTXO set, spent outputs,
invalid/pending transactions and balance history are never patched in place;
they are recomputed by replaying the transaction history (oldest first) after
every mutation.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

from brcore.constants import (
    SEQUENCE_GAP_LIMIT_EXTERNAL,
    SEQUENCE_GAP_LIMIT_INTERNAL,
    TX_FREE_MIN_PRIORITY,
    TX_MAX_LOCK_HEIGHT,
    TX_MAX_SIZE,
    TX_MIN_OUTPUT_AMOUNT,
    TX_POSTDATE_GRACE_SECONDS,
    TX_UNCONFIRMED,
    TXIN_SEQUENCE,
)
from brcore.transaction import Transaction, TxIn, hash_to_txid
from loguru import logger

from brwallet.backends.base import (
    AddressRecord,
    BlockHeightFeed,
    StaticBlockHeightFeed,
    TransactionRecord,
    UTXORecord,
    WalletStore,
)
from brwallet.wallet.address import (
    address_from_script_sig,
    address_to_scriptpubkey,
    pubkey_to_p2pkh_address,
    scriptpubkey_to_address,
)
from brwallet.wallet.models import UTXO, AddressCoordinates
from brwallet.wallet.sequence import BIP32Sequence, MasterPublicKey

BalanceListener = Callable[[int], None]


class WalletLedger:
    """
    Single-writer wallet state.

    Only transactions with at least one output paying a wallet address, or one
    input spending an output that pays a wallet address, are registered.
    Unconfirmed unrelated transactions are remembered (not registered) so that
    double spends and child-pays-for-parent parents can be resolved.
    """

    def __init__(
        self,
        master_public_key: bytes,
        sequence: BIP32Sequence,
        store: WalletStore | None = None,
        block_feed: BlockHeightFeed | None = None,
        gap_limit_external: int = SEQUENCE_GAP_LIMIT_EXTERNAL,
        gap_limit_internal: int = SEQUENCE_GAP_LIMIT_INTERNAL,
    ):
        if MasterPublicKey.from_bytes(master_public_key) is None:
            raise ValueError("Invalid master public key")

        self.master_public_key = bytes(master_public_key)
        self.sequence = sequence
        self.network = sequence.network
        self.store = store
        self.block_feed = block_feed or StaticBlockHeightFeed()
        self.gap_limit_external = gap_limit_external
        self.gap_limit_internal = gap_limit_internal

        self._lock = threading.RLock()
        self._listeners: list[BalanceListener] = []

        self._external_chain: list[str] = []
        self._internal_chain: list[str] = []
        self._coordinates: dict[str, AddressCoordinates] = {}
        self._scripts: dict[bytes, str] = {}
        self._used_addresses: set[str] = set()

        # every known transaction: registered ones plus cached unconfirmed
        # unrelated ones
        self._all_tx: dict[bytes, Transaction] = {}
        # registered hashes -> registration order
        self._registered: dict[bytes, int] = {}
        self._history: list[bytes] = []
        self._next_order = 0

        self._utxos: dict[UTXO, None] = {}
        self._spent_outputs: set[UTXO] = set()
        self._invalid_tx: set[bytes] = set()
        self._pending_tx: set[bytes] = set()
        self._balance_history: list[int] = []
        self._balance = 0
        self._total_sent = 0
        self._total_received = 0

        with self._lock:
            self._load()

    @property
    def lock(self) -> threading.RLock:
        """Ledger lock, for callers that need a consistent multi-query snapshot"""
        return self._lock

    # -- loading and persistence

    def _load(self) -> None:
        if self.store is None:
            self._addresses_with_gap_limit(self.gap_limit_external, False)
            self._addresses_with_gap_limit(self.gap_limit_internal, True)
            return

        records = sorted(self.store.load_addresses(), key=lambda r: (r.internal, r.index))
        broken_chains: set[bool] = set()
        for record in records:
            if record.internal in broken_chains:
                continue
            chain = self._internal_chain if record.internal else self._external_chain
            if record.index != len(chain):
                # the rest of this chain is re-derived by the scan below
                logger.warning(
                    f"Stored address {record.address} has index {record.index}, "
                    f"expected {len(chain)}; re-deriving the rest of the chain"
                )
                broken_chains.add(record.internal)
                continue
            self._add_address(record.address, record.internal, record.index)

        for tx_record in self.store.load_transactions():
            tx = tx_record.to_transaction()
            tx_hash = tx.tx_hash
            if tx_hash.hex() != tx_record.tx_hash:
                logger.warning(f"Stored transaction {tx_record.tx_hash} hash mismatch, skipping")
                continue
            self._all_tx[tx_hash] = tx
            self._register_order(tx_hash)
            self._mark_used(tx)

        # wallet scripts must be known before the history is replayed
        self._scan_chain(self.gap_limit_external, False)
        self._scan_chain(self.gap_limit_internal, True)

        self._sort_transactions()
        self._update_balance()

        stored_utxos = {UTXO(bytes.fromhex(r.tx_hash), r.index) for r in self.store.load_utxos()}
        if stored_utxos != set(self._utxos):
            if stored_utxos:
                logger.warning(
                    f"Stored UTXO set ({len(stored_utxos)} entries) does not match transaction "
                    f"history ({len(self._utxos)} entries), using history"
                )
            self._persist_utxos()

        logger.info(
            f"Loaded wallet ledger: {len(self._history)} transactions, "
            f"{len(self._coordinates)} addresses, balance {self._balance}"
        )

    def _persist_utxos(self) -> None:
        if self.store is not None:
            self.store.save_utxos([UTXORecord(tx_hash=u.tx_hash.hex(), index=u.index) for u in self._utxos])

    # -- addresses

    def _add_address(self, address: str, internal: bool, index: int) -> None:
        chain = self._internal_chain if internal else self._external_chain
        chain.append(address)
        self._coordinates[address] = AddressCoordinates(internal, index)
        self._scripts[address_to_scriptpubkey(address, self.network)] = address

    def _addresses_with_gap_limit(self, gap_limit: int, internal: bool) -> list[str]:
        chain = self._internal_chain if internal else self._external_chain

        i = len(chain)
        while i > 0 and chain[i - 1] not in self._used_addresses:
            i -= 1

        unused = chain[i:]
        if len(unused) >= gap_limit:
            return unused[:gap_limit]

        new_records = []
        while len(unused) < gap_limit:
            n = len(chain)
            public_key = self.sequence.public_key(n, internal, self.master_public_key)
            if public_key is None:
                logger.error(f"Address {int(internal)}/{n} is not derivable")
                break

            address = pubkey_to_p2pkh_address(public_key, self.network)
            self._add_address(address, internal, n)
            new_records.append(AddressRecord(address=address, index=n, internal=internal))
            unused.append(address)

        if new_records:
            logger.debug(f"Derived {len(new_records)} new {'internal' if internal else 'external'} addresses")
            if self.store is not None:
                self.store.save_addresses(new_records)

        return unused

    def _scan_chain(self, gap_limit: int, internal: bool) -> None:
        """Derive until gap_limit unused addresses follow the last used one."""
        chain = self._internal_chain if internal else self._external_chain
        while True:
            length = len(chain)
            self._addresses_with_gap_limit(gap_limit, internal)
            if len(chain) == length:
                return

    def addresses_with_gap_limit(self, gap_limit: int, internal: bool) -> list[str]:
        """
        The first gap_limit addresses after the last used address of a chain,
        deriving and persisting new ones as needed.
        """
        with self._lock:
            return self._addresses_with_gap_limit(gap_limit, internal)

    @property
    def receive_address(self) -> str | None:
        addresses = self.addresses_with_gap_limit(1, False)
        return addresses[-1] if addresses else None

    @property
    def change_address(self) -> str | None:
        addresses = self.addresses_with_gap_limit(1, True)
        return addresses[-1] if addresses else None

    @property
    def addresses(self) -> list[str]:
        """All derived addresses, external chain first"""
        with self._lock:
            return self._external_chain + self._internal_chain

    def contains_address(self, address: str) -> bool:
        with self._lock:
            return address in self._coordinates

    def address_is_used(self, address: str) -> bool:
        with self._lock:
            return address in self._used_addresses

    def address_coordinates(self, address: str) -> AddressCoordinates | None:
        with self._lock:
            return self._coordinates.get(address)

    def _output_address(self, script: bytes) -> str | None:
        address = self._scripts.get(script)
        if address is not None:
            return address
        return scriptpubkey_to_address(script, self.network)

    def input_address(self, inp: TxIn) -> str | None:
        """Address spent by an input, from its spent output script or scriptSig"""
        with self._lock:
            if inp.script:
                return self._output_address(inp.script)

            prev = self._all_tx.get(inp.prev_hash)
            if prev is not None and inp.prev_index < len(prev.outputs):
                return self._output_address(prev.outputs[inp.prev_index].script)

            if inp.signature:
                return address_from_script_sig(inp.signature, self.network)

            return None

    def _mark_used(self, tx: Transaction) -> None:
        for inp in tx.inputs:
            address = self.input_address(inp)
            if address is not None:
                self._used_addresses.add(address)
        for out in tx.outputs:
            address = self._output_address(out.script)
            if address is not None:
                self._used_addresses.add(address)

    def _pays_wallet(self, script: bytes) -> bool:
        return script in self._scripts

    def _prev_output_script(self, inp: TxIn) -> bytes | None:
        prev = self._all_tx.get(inp.prev_hash)
        if prev is None or inp.prev_index >= len(prev.outputs):
            return None
        return prev.outputs[inp.prev_index].script

    # -- balance replay

    def _dependency_depth(self, tx_hash: bytes, memo: dict[bytes, int]) -> int:
        if tx_hash in memo:
            return memo[tx_hash]

        tx = self._all_tx[tx_hash]
        depth = 0
        for parent_hash in set(tx.input_hashes):
            if parent_hash in self._registered and parent_hash != tx_hash:
                parent = self._all_tx[parent_hash]
                if parent.block_height == tx.block_height:
                    depth = max(depth, self._dependency_depth(parent_hash, memo) + 1)

        memo[tx_hash] = depth
        return depth

    def _sort_transactions(self) -> None:
        memo: dict[bytes, int] = {}

        def sort_key(tx_hash: bytes) -> tuple[int, int, int, int]:
            tx = self._all_tx[tx_hash]
            return (
                tx.block_height,
                self._dependency_depth(tx_hash, memo),
                tx.timestamp,
                self._registered[tx_hash],
            )

        self._history.sort(key=sort_key)

    def _is_pending_in_replay(self, tx: Transaction, pending: set[bytes], block_height: int, now: float) -> bool:
        if tx.size > TX_MAX_SIZE:
            return True

        for out in tx.outputs:
            if out.amount < TX_MIN_OUTPUT_AMOUNT:
                return True

        for inp in tx.inputs:
            if inp.sequence < TXIN_SEQUENCE - 1:
                return True
            if inp.sequence < TXIN_SEQUENCE:
                if tx.lock_time < TX_MAX_LOCK_HEIGHT and tx.lock_time > block_height + 1:
                    return True
                if tx.lock_time >= TX_MAX_LOCK_HEIGHT and tx.lock_time > now:
                    return True
            if inp.prev_hash in pending:
                return True

        return False

    def _update_balance(self) -> bool:
        """Replay history. Returns True if the balance changed."""
        utxos: dict[UTXO, None] = {}
        spent_outputs: set[UTXO] = set()
        invalid_tx: set[bytes] = set()
        pending_tx: set[bytes] = set()
        balance_history: list[int] = []
        balance = prev_balance = 0
        total_sent = total_received = 0
        block_height = self.block_feed.get_block_height()
        now = time.time()

        for tx_hash in self._history:
            tx = self._all_tx[tx_hash]
            spent = {UTXO(*inp.outpoint) for inp in tx.inputs}

            if not tx.is_confirmed and (
                spent & spent_outputs or set(tx.input_hashes) & invalid_tx
            ):
                invalid_tx.add(tx_hash)
                balance_history.append(balance)
                continue

            spent_outputs |= spent

            # a pending transaction spends its inputs but its outputs do not
            # count until it is no longer pending
            if not tx.is_confirmed and self._is_pending_in_replay(tx, pending_tx, block_height, now):
                pending_tx.add(tx_hash)
            else:
                for i, out in enumerate(tx.outputs):
                    if self._pays_wallet(out.script):
                        utxos[UTXO(tx_hash, i)] = None
                        balance += out.amount

            # outputs may be spent by a transaction earlier in the history
            for utxo in [u for u in utxos if u in spent_outputs]:
                balance -= self._all_tx[utxo.tx_hash].outputs[utxo.index].amount
                del utxos[utxo]

            if balance > prev_balance:
                total_received += balance - prev_balance
            if balance < prev_balance:
                total_sent += prev_balance - balance

            balance_history.append(balance)
            prev_balance = balance

        changed = balance != self._balance

        self._utxos = utxos
        self._spent_outputs = spent_outputs
        self._invalid_tx = invalid_tx
        self._pending_tx = pending_tx
        self._balance_history = balance_history
        self._balance = balance
        self._total_sent = total_sent
        self._total_received = total_received

        return changed

    # -- listeners

    def add_balance_listener(self, listener: BalanceListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_balance_listener(self, listener: BalanceListener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    def _notify_balance(self, balance: int) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(balance)

    # -- mutations

    def _register_order(self, tx_hash: bytes) -> None:
        self._registered[tx_hash] = self._next_order
        self._next_order += 1
        self._history.append(tx_hash)

    def _contains_transaction(self, tx: Transaction) -> bool:
        for out in tx.outputs:
            if self._pays_wallet(out.script):
                return True

        for inp in tx.inputs:
            script = self._prev_output_script(inp)
            if script is not None and self._pays_wallet(script):
                return True

        return False

    def contains_transaction(self, tx: Transaction) -> bool:
        """True if the transaction pays or spends from a wallet address"""
        with self._lock:
            return self._contains_transaction(tx)

    def register_transaction(self, tx: Transaction) -> bool:
        """
        Add a transaction to the wallet.

        Returns False if it is unrelated to the wallet, True if it was added
        or was already registered.
        """
        tx_hash = tx.tx_hash

        with self._lock:
            if not self._contains_transaction(tx):
                if not tx.is_confirmed:
                    self._all_tx.setdefault(tx_hash, tx)
                logger.debug(f"Ignoring transaction {hash_to_txid(tx_hash)}: not related to wallet")
                return False

            if tx_hash in self._registered:
                return True

            self._all_tx[tx_hash] = tx
            self._register_order(tx_hash)
            self._mark_used(tx)
            self._sort_transactions()
            changed = self._update_balance()

            # used addresses are replaced so the gap limit keeps holding
            self._scan_chain(self.gap_limit_external, False)
            self._scan_chain(self.gap_limit_internal, True)

            if self.store is not None:
                self.store.save_transaction(TransactionRecord.from_transaction(tx))
            self._persist_utxos()
            balance = self._balance

        logger.info(f"Registered transaction {hash_to_txid(tx_hash)}")
        if changed:
            self._notify_balance(balance)
        return True

    def _collect_removals(self, tx_hash: bytes, removed: list[bytes]) -> None:
        tx = self._all_tx.get(tx_hash)
        if tx is None or tx_hash in removed:
            return

        for child_hash in list(self._history):
            if child_hash == tx_hash:
                continue
            if tx_hash in self._all_tx[child_hash].input_hashes:
                self._collect_removals(child_hash, removed)

        removed.append(tx_hash)

    def remove_transaction(self, tx_hash: bytes) -> bool:
        """
        Remove a transaction and, recursively, every registered transaction
        spending its outputs. Returns False if the hash is unknown.
        """
        with self._lock:
            removed: list[bytes] = []
            self._collect_removals(tx_hash, removed)
            if not removed:
                return False

            for h in removed:
                del self._all_tx[h]
                if h in self._registered:
                    del self._registered[h]
                    self._history.remove(h)

            changed = self._update_balance()

            if self.store is not None:
                self.store.delete_transactions([h.hex() for h in removed])
            self._persist_utxos()
            balance = self._balance

        for h in removed:
            logger.info(f"Removed transaction {hash_to_txid(h)}")
        if changed:
            self._notify_balance(balance)
        return True

    def set_block_height(self, block_height: int, timestamp: int, tx_hashes: Iterable[bytes]) -> list[bytes]:
        """
        Set block height and timestamp of known transactions.

        TX_UNCONFIRMED with timestamp 0 marks a transaction (and, through the
        verified check, everything spending it) as not safe to rely on.
        Returns the registered hashes that changed.
        """
        updated: list[bytes] = []

        with self._lock:
            for tx_hash in tx_hashes:
                tx = self._all_tx.get(tx_hash)
                if tx is None or (tx.block_height == block_height and tx.timestamp == timestamp):
                    continue

                tx.block_height = block_height
                tx.timestamp = timestamp

                if tx_hash in self._registered:
                    updated.append(tx_hash)
                elif block_height != TX_UNCONFIRMED:
                    # unrelated transactions are only kept while unconfirmed
                    del self._all_tx[tx_hash]

            if not updated:
                return []

            self._sort_transactions()
            changed = self._update_balance()

            if self.store is not None:
                self.store.update_transactions([h.hex() for h in updated], block_height, timestamp)
            self._persist_utxos()
            balance = self._balance

        logger.info(f"Set block height {block_height} on {len(updated)} transactions")
        if changed:
            self._notify_balance(balance)
        return updated

    # -- queries

    @property
    def balance(self) -> int:
        with self._lock:
            return self._balance

    @property
    def total_sent(self) -> int:
        with self._lock:
            return self._total_sent

    @property
    def total_received(self) -> int:
        with self._lock:
            return self._total_received

    @property
    def unspent_outputs(self) -> list[UTXO]:
        with self._lock:
            return list(self._utxos)

    @property
    def recent_transactions(self) -> list[Transaction]:
        """Registered transactions, newest first"""
        with self._lock:
            return [self._all_tx[h] for h in reversed(self._history)]

    def transaction_for_hash(self, tx_hash: bytes) -> Transaction | None:
        with self._lock:
            return self._all_tx.get(tx_hash)

    def utxo_value(self, utxo: UTXO) -> int | None:
        with self._lock:
            tx = self._all_tx.get(utxo.tx_hash)
            if tx is None or utxo.index >= len(tx.outputs):
                return None
            return tx.outputs[utxo.index].amount

    def amount_received_from_transaction(self, tx: Transaction) -> int:
        """Sum of outputs paying wallet addresses"""
        with self._lock:
            return sum(out.amount for out in tx.outputs if self._pays_wallet(out.script))

    def amount_sent_by_transaction(self, tx: Transaction) -> int:
        """Sum of spent outputs that paid wallet addresses"""
        with self._lock:
            amount = 0
            for inp in tx.inputs:
                prev = self._all_tx.get(inp.prev_hash)
                if prev is None or inp.prev_index >= len(prev.outputs):
                    continue
                out = prev.outputs[inp.prev_index]
                if self._pays_wallet(out.script):
                    amount += out.amount
            return amount

    def fee_for_transaction(self, tx: Transaction) -> int | None:
        """Inputs minus outputs, or None if any spent output is unknown"""
        with self._lock:
            amount = 0
            for inp in tx.inputs:
                prev = self._all_tx.get(inp.prev_hash)
                if prev is None or inp.prev_index >= len(prev.outputs):
                    return None
                amount += prev.outputs[inp.prev_index].amount

            return amount - sum(out.amount for out in tx.outputs)

    def balance_after_transaction(self, tx: Transaction) -> int:
        """Historical balance right after tx, or the current balance if unregistered"""
        with self._lock:
            tx_hash = tx.tx_hash
            if tx_hash in self._registered:
                i = self._history.index(tx_hash)
                if i < len(self._balance_history):
                    return self._balance_history[i]
            return self._balance

    def block_height_until_free(self, tx: Transaction) -> int:
        """
        Block height at which tx would have enough priority to relay without a
        fee. TX_UNCONFIRMED if any known input is unconfirmed.
        """
        with self._lock:
            amount_total = 0
            amounts_by_heights = 0

            for inp in tx.inputs:
                prev = self._all_tx.get(inp.prev_hash)
                if prev is None or inp.prev_index >= len(prev.outputs):
                    break
                if not prev.is_confirmed:
                    return TX_UNCONFIRMED

                amount = prev.outputs[inp.prev_index].amount
                amount_total += amount
                amounts_by_heights += amount * prev.block_height

            if amount_total == 0:
                return TX_UNCONFIRMED

            return (TX_FREE_MIN_PRIORITY * tx.size + amounts_by_heights + amount_total - 1) // amount_total

    def transaction_is_valid(self, tx: Transaction) -> bool:
        """
        Confirmed transactions are valid. A registered one is valid unless the
        replay found it double spending. Otherwise it is invalid if it spends
        an already spent output or any known input transaction is invalid.
        """
        with self._lock:
            if tx.is_confirmed:
                return True

            tx_hash = tx.tx_hash
            if tx_hash in self._registered:
                return tx_hash not in self._invalid_tx

            for inp in tx.inputs:
                prev = self._all_tx.get(inp.prev_hash)
                if prev is not None and not self.transaction_is_valid(prev):
                    return False
                if UTXO(*inp.outpoint) in self._spent_outputs:
                    return False

            return True

    def transaction_is_pending(self, tx: Transaction) -> bool:
        """Registered, valid, but not counted in the balance yet"""
        with self._lock:
            return tx.tx_hash in self._pending_tx

    def transaction_is_verified(self, tx: Transaction) -> bool:
        """
        Whether an unconfirmed transaction is safe to rely on: it has been
        relayed to us (nonzero timestamp), fits TX_MAX_SIZE, has only final
        input sequences and no dust outputs, and every known input transaction
        is itself verified.
        """
        with self._lock:
            if tx.is_confirmed:
                return True
            if tx.timestamp == 0:
                return False
            if tx.size > TX_MAX_SIZE:
                return False
            if any(inp.sequence < TXIN_SEQUENCE for inp in tx.inputs):
                return False
            if any(out.amount < TX_MIN_OUTPUT_AMOUNT for out in tx.outputs):
                return False

            for prev_hash in set(tx.input_hashes):
                prev = self._all_tx.get(prev_hash)
                if prev is not None and not self.transaction_is_verified(prev):
                    return False

            return True

    def transaction_is_postdated(self, tx: Transaction, block_height: int | None = None) -> bool:
        """True if tx cannot be mined in the next block nor within ten minutes"""
        if block_height is None:
            block_height = self.block_feed.get_block_height()

        if tx.is_confirmed and tx.block_height > block_height:
            return True
        if tx.lock_time <= block_height + 1:
            return False
        if tx.lock_time >= TX_MAX_LOCK_HEIGHT and tx.lock_time < time.time() + TX_POSTDATE_GRACE_SECONDS:
            return False

        # lock time only applies when some input is not final
        return any(inp.sequence < TXIN_SEQUENCE for inp in tx.inputs)
