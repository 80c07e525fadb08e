#!/usr/bin/env python3
"""
Simulated KRC-721 airdrop against the in-memory ledger.
"""
import logging
import os

from krc_transfer import (
    NftTransferRequest,
    TransferClient,
    TransferSettings,
    load_treasury,
)
from krc_transfer.ledger import InMemoryLedger
from krc_transfer.utils import kaspa_to_sompi, sompi_to_kaspa


def main():
    """
    Demonstrate a sequential airdrop without touching the network.

    This example shows how to:
    1. Load the treasury identity from a private key
    2. Fund a simulated ledger
    3. Run a batch of NFT transfers
    4. Inspect the batch report
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # Any 32-byte key works against the simulated ledger
    PRIVATE_KEY = os.environ.get("TREASURY_PRIVATE_KEY", "11" * 32)
    treasury = load_treasury(PRIVATE_KEY, "mainnet")
    print(f"Treasury address: {treasury.address}")

    ledger = InMemoryLedger("mainnet")
    ledger.fund(treasury.address, kaspa_to_sompi(20))

    settings = TransferSettings(batch_delay=0)
    client = TransferClient(ledger, treasury, settings=settings)

    recipient = load_treasury("22" * 32, "mainnet").address
    requests = [
        NftTransferRequest(ticker="KASPUNKS", token_id=str(token_id), destination=recipient)
        for token_id in (1, 2, 3)
    ]
    print(f"Required funds: {sompi_to_kaspa(client.required_funds(len(requests)))} KAS")

    report = client.airdrop(requests)
    for result in report.results:
        print(f"{result.request.describe()}: {result.state.value}")
        print(f"  Envelope address: {result.script_hash_address}")
        print(f"  Commit TX: {result.commit_transaction_id}")
        print(f"  Reveal TX: {result.reveal_transaction_id}")

    print(f"Summary: {report.counts()}")
    print(f"Treasury balance: {sompi_to_kaspa(ledger.get_balance(treasury.address))} KAS")


if __name__ == "__main__":
    main()
