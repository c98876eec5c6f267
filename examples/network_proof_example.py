#!/usr/bin/env python3
"""
Example of building and checking a call proof against a live network.
"""
import os

from xchain_rpc import NetworkConfig, Web3Relay, create_proof_data, make_web3, verify_proof
from xchain_rpc.proofs import ProofBuildError
from xchain_rpc.verification import decode_proof


def main():
    """
    Fetch a transaction's block from a node and prove the transaction.

    This example shows how to:
    1. Resolve a network's RPC URL from the packaged configuration
    2. Show the registries and gas budgets configured for it
    3. Build the inclusion proof of a transaction
    4. Check both inclusion proofs and the header's canonicity
    """
    # Read environment variables
    NETWORK = os.environ.get("NETWORK", "sepolia")
    TX_HASH = os.environ.get("TX_HASH")

    if not TX_HASH:
        print("ERROR: TX_HASH environment variable is required")
        return

    print("Available networks:")
    for network_name in NetworkConfig.load_networks().keys():
        print(f"  - {network_name}")
    print()

    w3 = make_web3(NetworkConfig.get_rpc_url(NETWORK))
    confirmations = NetworkConfig.get_confirmations(NETWORK)
    proxy_address = NetworkConfig.get_proxy_address(NETWORK)
    server_address = NetworkConfig.get_server_address(NETWORK)
    print(f"RPCProxy: {proxy_address or 'not deployed'}")
    print(f"RPCServer: {server_address or 'not deployed'}")
    print(f"Minimum call budget: {NetworkConfig.get_accountant(NETWORK).minimum_budget()} gas")
    print(f"Minimum callback budget: {NetworkConfig.get_accountant(NETWORK, callback=True).minimum_budget()} gas")
    print()

    try:
        proof = create_proof_data(w3, TX_HASH)
    except ProofBuildError as e:
        print(f"Error building proof: {e}")
        return

    decoded = decode_proof(proof)
    header = decoded.header
    print(f"Block {header.number}: 0x{decoded.header_hash.hex()}")
    recipient = decoded.transaction.recipient
    if recipient and recipient in (proxy_address, server_address):
        print(f"Transaction sent to the registry at {recipient}")
    print(f"Transaction index path: 0x{proof.tx_index_path.hex()}")
    print(f"Proof nodes: {len(proof.tx_proof_nodes)} transaction, {len(proof.receipt_proof_nodes)} receipt")

    tx_result = verify_proof(header.transactions_root, proof.tx_index_path, proof.tx_proof_nodes, proof.encoded_tx)
    receipt_result = verify_proof(
        header.receipts_root, proof.tx_index_path, proof.receipt_proof_nodes, proof.encoded_receipt
    )
    print(f"Transaction: {tx_result.status.value}")
    print(f"Receipt: {receipt_result.status.value}")

    relay = Web3Relay(w3)
    canonical = relay.is_header_canonical(decoded.header_hash, confirmations)
    print(f"Canonical with {confirmations} confirmations: {canonical}")


if __name__ == "__main__":
    main()
