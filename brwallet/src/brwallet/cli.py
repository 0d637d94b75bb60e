"""
brwallet CLI - Derive master keys, list watch-only addresses and inspect a wallet store.
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from brcore.constants import TX_UNCONFIRMED
from loguru import logger

from brwallet.backends.json_file import JsonFileStore
from brwallet.config import get_settings
from brwallet.wallet.address import pubkey_to_p2pkh_address
from brwallet.wallet.bip32 import mnemonic_to_seed
from brwallet.wallet.sequence import BIP32Sequence
from brwallet.wallet.service import WalletService

app = typer.Typer(
    name="br-wallet",
    help="HD wallet key derivation and ledger tools",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _load_seed(seed_hex: str | None, mnemonic: str | None, passphrase: str) -> bytes:
    if seed_hex:
        try:
            return bytes.fromhex(seed_hex)
        except ValueError:
            logger.error("Seed must be hex encoded")
            raise typer.Exit(1)

    if mnemonic:
        return mnemonic_to_seed(mnemonic.strip(), passphrase)

    logger.error("Either --seed-hex or --mnemonic is required")
    raise typer.Exit(1)


def _sequence(network: str) -> BIP32Sequence:
    try:
        return BIP32Sequence(network)
    except ValueError:
        logger.error(f"Unknown network: {network}")
        raise typer.Exit(1)


@app.command()
def master_key(
    seed_hex: str | None = typer.Option(None, "--seed-hex", envvar="BRWALLET_SEED_HEX", help="Hex seed"),
    mnemonic: str | None = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    passphrase: str = typer.Option("", "--passphrase", help="BIP39 passphrase"),
    network: str = typer.Option("mainnet", "--network", "-n", envvar="BRWALLET_NETWORK"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Print the master xprv, the account xpub and the watch-only key blob."""
    setup_logging(log_level)

    seed = _load_seed(seed_hex, mnemonic, passphrase)
    sequence = _sequence(network)

    master_public_key = sequence.master_public_key_from_seed(seed)
    if master_public_key is None:
        logger.error("Seed does not produce a valid master key")
        raise typer.Exit(1)

    typer.echo(f"xprv: {sequence.serialized_master_private_key_from_seed(seed)}")
    typer.echo(f"xpub: {sequence.serialized_master_public_key(master_public_key)}")
    typer.echo(f"master public key: {master_public_key.hex()}")


@app.command()
def addresses(
    xpub: str = typer.Option(..., "--xpub", envvar="BRWALLET_XPUB", help="Account xpub (m/0')"),
    count: int = typer.Option(10, "--count", "-c", min=1),
    start: int = typer.Option(0, "--start", "-s", min=0),
    internal: bool = typer.Option(False, "--internal", help="Change chain instead of receive chain"),
    network: str = typer.Option("mainnet", "--network", "-n", envvar="BRWALLET_NETWORK"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List watch-only addresses of one chain."""
    setup_logging(log_level)

    sequence = _sequence(network)
    master_public_key = sequence.parse_master_public_key(xpub)
    if master_public_key is None:
        logger.error("Invalid account xpub")
        raise typer.Exit(1)

    chain = 1 if internal else 0
    for n in range(start, start + count):
        public_key = sequence.public_key(n, internal, master_public_key)
        if public_key is None:
            logger.warning(f"Address {chain}/{n} is not derivable")
            continue
        typer.echo(f"m/0'/{chain}/{n}  {pubkey_to_p2pkh_address(public_key, network)}")


@app.command()
def auth_key(
    seed_hex: str | None = typer.Option(None, "--seed-hex", envvar="BRWALLET_SEED_HEX", help="Hex seed"),
    mnemonic: str | None = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    passphrase: str = typer.Option("", "--passphrase", help="BIP39 passphrase"),
    network: str = typer.Option("mainnet", "--network", "-n", envvar="BRWALLET_NETWORK"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Print the authentication public key (m/1'/0)."""
    setup_logging(log_level)

    seed = _load_seed(seed_hex, mnemonic, passphrase)
    public_key = _sequence(network).auth_public_key_from_seed(seed)
    if public_key is None:
        logger.error("Seed does not produce a valid authentication key")
        raise typer.Exit(1)

    typer.echo(public_key.hex())


@app.command()
def info(
    xpub: str = typer.Option(..., "--xpub", envvar="BRWALLET_XPUB", help="Account xpub (m/0')"),
    store_path: Path | None = typer.Option(None, "--store", help="Wallet store JSON file"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Defaults to BRWALLET_LOG_LEVEL"),
) -> None:
    """Show balance, next addresses and recent transactions from a wallet store."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)

    store = JsonFileStore(store_path or settings.store_path)

    try:
        wallet = WalletService.from_xpub(xpub, settings, store)
    except ValueError as e:
        logger.error(f"Failed to open wallet: {e}")
        raise typer.Exit(1)

    ledger = wallet.ledger
    typer.echo(f"\nBalance:         {ledger.balance:,} sats ({ledger.balance / 1e8:.8f} BTC)")
    typer.echo(f"Total received:  {ledger.total_received:,} sats")
    typer.echo(f"Total sent:      {ledger.total_sent:,} sats")
    typer.echo(f"Receive address: {wallet.receive_address}")
    typer.echo(f"Change address:  {wallet.change_address}")

    transactions = ledger.recent_transactions
    if not transactions:
        typer.echo("\nNo transactions.")
        return

    typer.echo(f"\nRecent transactions ({len(transactions)}):")
    for tx in transactions:
        delta = ledger.amount_received_from_transaction(tx) - ledger.amount_sent_by_transaction(tx)
        height = "unconfirmed" if tx.block_height == TX_UNCONFIRMED else str(tx.block_height)
        typer.echo(f"  {tx.txid}  {delta:>+15,} sats  {height}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
