"""
xchain-rpc command line interface.

    xchain-rpc build-proof 0xTXHASH --network sepolia --output proof.json
    xchain-rpc verify-proof proof.json --rpc-url https://node.example
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from requests.exceptions import RequestException
from web3.exceptions import Web3Exception

from xchain_rpc.config import NetworkConfig, make_web3
from xchain_rpc.exceptions import CodecError
from xchain_rpc.models import CallAcknowledged, CallExecuted, CallPrepared, CallProof, CallRequested
from xchain_rpc.proofs import ProofBuildError, create_proof_data
from xchain_rpc.relay import Web3Relay
from xchain_rpc.trie import verify_proof
from xchain_rpc.verification import decode_proof
from xchain_rpc.version import __version__

# Configure logger
logger = logging.getLogger(__name__)

app = typer.Typer(help="Build and check cross-chain call proofs.", no_args_is_help=True)

EVENT_MODELS = (CallPrepared, CallRequested, CallExecuted, CallAcknowledged)


def _resolve_rpc_url(network: Optional[str], rpc_url: Optional[str]) -> Optional[str]:
    if network:
        try:
            return NetworkConfig.get_rpc_url(network, override=rpc_url)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=2)
    return rpc_url


def _recipient_role(network: str, recipient: Optional[str]) -> Optional[str]:
    """Name the registry a proven transaction was sent to, if it is one of the network's."""
    if not recipient:
        return None
    roles = {
        "rpcProxy": NetworkConfig.get_proxy_address(network),
        "rpcServer": NetworkConfig.get_server_address(network),
    }
    for role, address in roles.items():
        if address and address.lower() == recipient.lower():
            return role
    return None


def _describe_events(proof: CallProof) -> List[Dict[str, Any]]:
    events = []
    for log in decode_proof(proof).receipt.logs:
        for model in EVENT_MODELS:
            if model.EVENT.matches(log.topics):
                try:
                    event = model.from_log(log)
                except ValueError:
                    continue
                events.append({"event": model.EVENT.name, **event.model_dump(mode="json", by_alias=True)})
    return events


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@app.command()
def version() -> None:
    """Print the package version."""
    typer.echo(__version__)


@app.command("build-proof")
def build_proof(
    tx_hash: str = typer.Argument(..., help="Hash of the transaction to prove"),
    network: Optional[str] = typer.Option(None, "--network", "-n", help="Network name from networks.json"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="JSON-RPC endpoint (overrides the network's)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the proof to this file"),
) -> None:
    """Fetch a transaction's block and build its inclusion proof."""
    url = _resolve_rpc_url(network, rpc_url)
    if not url:
        typer.echo("Error: provide --network or --rpc-url", err=True)
        raise typer.Exit(code=2)

    try:
        proof = create_proof_data(make_web3(url), tx_hash)
    except (ProofBuildError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except (Web3Exception, RequestException) as e:
        typer.echo(f"Error: node request failed: {e}", err=True)
        raise typer.Exit(code=1)

    document = proof.to_json(indent=2)
    if output:
        output.write_text(document + "\n", encoding="utf-8")
        typer.echo(f"Proof written to {output}")
    else:
        typer.echo(document)


@app.command("verify-proof")
def verify_proof_file(
    proof_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON proof file"),
    network: Optional[str] = typer.Option(None, "--network", "-n", help="Network name from networks.json"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Also check the header is canonical on this node"),
    confirmations: Optional[int] = typer.Option(
        None, "--confirmations", help="Blocks required on top of the header (default: the network's, else 0)"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print a machine-readable report"),
) -> None:
    """Check a proof's inclusion claims against its header."""
    try:
        proof = CallProof.parse(proof_file.read_bytes())
        decoded = decode_proof(proof)
    except CodecError as e:
        typer.echo(f"Error: invalid proof: {e}", err=True)
        raise typer.Exit(code=1)

    header = decoded.header
    tx_result = verify_proof(header.transactions_root, proof.tx_index_path, proof.tx_proof_nodes, proof.encoded_tx)
    receipt_result = verify_proof(
        header.receipts_root, proof.tx_index_path, proof.receipt_proof_nodes, proof.encoded_receipt
    )
    report: Dict[str, Any] = {
        "block": header.number,
        "blockHash": "0x" + decoded.header_hash.hex(),
        "to": decoded.transaction.recipient,
        "receiptStatus": decoded.receipt.succeeded,
        "transaction": tx_result.status.value,
        "receipt": receipt_result.status.value,
        "events": _describe_events(proof),
    }
    ok = tx_result.is_member and receipt_result.is_member

    url = _resolve_rpc_url(network, rpc_url)
    if network:
        report["recipientRole"] = _recipient_role(network, decoded.transaction.recipient)
        if confirmations is None:
            confirmations = NetworkConfig.get_confirmations(network)
    if url:
        relay = Web3Relay(make_web3(url))
        canonical = relay.is_header_canonical(decoded.header_hash, confirmations or 0)
        report["canonical"] = canonical
        ok = ok and canonical

    report["valid"] = ok
    if as_json:
        typer.echo(json.dumps(report, indent=2))
    else:
        typer.echo(f"Block {report['block']} ({report['blockHash']})")
        typer.echo(f"  transaction: {report['transaction']}")
        typer.echo(f"  receipt:     {report['receipt']} (status {'success' if report['receiptStatus'] else 'failure'})")
        if report.get("recipientRole"):
            typer.echo(f"  sent to:     {report['recipientRole']} {report['to']}")
        if "canonical" in report:
            typer.echo(f"  canonical:   {report['canonical']}")
        for event in report["events"]:
            typer.echo(f"  event {event['event']}: call {event.get('callId')}")
        typer.echo("VALID" if ok else "INVALID")

    if not ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
