#!/usr/bin/env python3
"""
Example of a KRC-20 transfer with a ledger client factory and JSON bookkeeping.
"""
import importlib
import os

from krc_transfer import JsonFileBookkeeper, TransferClient, load_treasury


def main():
    """
    Transfer KRC-20 tokens from the treasury on a real network.

    Requires:
        TREASURY_PRIVATE_KEY, TREASURY_ADDRESS: treasury identity
        LEDGER_FACTORY: ``module:callable`` returning a connected ledger client
        DESTINATION: recipient address
    """
    NETWORK = os.environ.get("NETWORK", "testnet-10")
    PRIVATE_KEY = os.environ.get("TREASURY_PRIVATE_KEY")
    ADDRESS = os.environ.get("TREASURY_ADDRESS")
    FACTORY = os.environ.get("LEDGER_FACTORY")
    DESTINATION = os.environ.get("DESTINATION")

    if not PRIVATE_KEY or not ADDRESS:
        print("ERROR: TREASURY_PRIVATE_KEY and TREASURY_ADDRESS environment variables are required")
        return
    if not FACTORY or not DESTINATION:
        print("ERROR: LEDGER_FACTORY and DESTINATION environment variables are required")
        return

    module_name, _, attr = FACTORY.partition(":")
    ledger = getattr(importlib.import_module(module_name), attr)(NETWORK)
    treasury = load_treasury(PRIVATE_KEY, NETWORK, ADDRESS)

    client = TransferClient.for_network(
        ledger,
        treasury,
        network=NETWORK,
        bookkeeper=JsonFileBookkeeper(),
    )
    try:
        result = client.transfer_krc20("NACHO", "100000000", DESTINATION)
    finally:
        client.close()

    print(f"State: {result.state.value}")
    print(f"Commit TX: {result.commit_transaction_id}")
    print(f"Reveal TX: {result.reveal_transaction_id}")
    if result.pending:
        print("Reveal matured but the output is not visible yet; check again later")
    elif result.error:
        print(f"Error: {result.error}")


if __name__ == "__main__":
    main()
