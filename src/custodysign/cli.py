"""Command line runner.

Usage:
    python -m custodysign.cli info
    python -m custodysign.cli address
    python -m custodysign.cli sign-test --chain-id 42161
    python -m custodysign.cli monitor <TX_ID> --confirmations 3

Environment variables:
    FIREBLOCKS_API_KEY: API user key
    FIREBLOCKS_SECRET_KEY_PATH: Path to the API user private key
    FIREBLOCKS_BASE_URL: sandbox, production or an explicit URL
    VAULT_ACCOUNT_ID: Vault account holding the signing key
    ETH_RPC_URL: EVM RPC URL for on-chain confirmation (optional)
"""

import argparse
import asyncio
import json
import logging
import sys

from custodysign.config import get_settings
from custodysign.custody.base import CustodyError
from custodysign.monitor.factory import get_chain, get_monitor
from custodysign.monitor.lifecycle import MonitorError
from custodysign.signing.base import SigningError
from custodysign.signing.factory import create_custody_client, create_signer
from custodysign.signing.typed_data import build_request
from custodysign.signing.verify import recover_typed_data_signer

logger = logging.getLogger(__name__)


async def show_address() -> int:
    """Print the signer address of the configured vault."""
    settings = get_settings()
    async with create_custody_client(settings) as client:
        signer = create_signer(client, settings)
        identity = await signer.get_identity()
        print(f"Vault {identity.vault_account_id} ({identity.asset_id}): {identity.address}")
    return 0


async def sign_test(chain_id: int) -> int:
    """Sign a minimal EIP-712 message and check the signature.

    Blocks until approvers sign the job in the custody console.
    """
    settings = get_settings()
    async with create_custody_client(settings) as client:
        signer = create_signer(client, settings)
        address = await signer.get_address()
        print(f"Signer address: {address}")

        domain = {"name": "Test", "version": "1", "chainId": chain_id}
        types = {
            "TestMessage": [
                {"name": "from", "type": "address"},
                {"name": "contents", "type": "string"},
                {"name": "value", "type": "uint256"},
            ],
        }
        message = {"from": address, "contents": "Hello from custodysign", "value": 12345}

        print("Requesting signature, approve the job in the custody console...")
        signature = await signer.sign_typed_data(domain, types, message)
        if len(bytes.fromhex(signature[2:])) != 65:
            print(f"Unexpected signature length: {signature}", file=sys.stderr)
            return 1

        recovered = recover_typed_data_signer(build_request(domain, types, message).to_payload(), signature)
        print(f"Signature: {signature}")
        print(f"Recovered: {recovered}")

        if recovered.lower() != address.lower():
            print("Recovered address does not match the vault address", file=sys.stderr)
            return 1
    return 0


async def monitor_transaction(tx_id: str, confirmations: int, rpc_url, interval) -> int:
    """Follow a custody transaction until its final outcome."""
    settings = get_settings()
    async with create_custody_client(settings) as client:
        chain = get_chain(settings, rpc_url)
        try:
            monitor = get_monitor(client, settings, chain=chain)
            result = await monitor.monitor(
                tx_id,
                poll_interval=interval,
                required_confirmations=confirmations,
            )
        finally:
            if chain is not None:
                await chain.aclose()

    print(json.dumps({
        "id": result.transaction_id,
        "status": result.status,
        "txHash": result.tx_hash,
        "blockNumber": result.block_number,
        "confirmations": result.confirmations,
        "error": result.error,
        "failure": result.failure.value if result.failure else None,
    }, indent=2))
    return 0 if result.succeeded else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="custodysign", description="Custody-backed EIP-712 signing")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("info", help="Show configuration (secrets redacted)")
    commands.add_parser("address", help="Show the signer address")

    sign_parser = commands.add_parser("sign-test", help="Sign a test EIP-712 message")
    sign_parser.add_argument("--chain-id", type=int, default=42161, help="Domain chainId")

    monitor_parser = commands.add_parser("monitor", help="Monitor a custody transaction")
    monitor_parser.add_argument("tx_id", help="Custody transaction id")
    monitor_parser.add_argument("--confirmations", type=int, default=None, help="Confirmations to wait for")
    monitor_parser.add_argument("--rpc-url", default=None, help="EVM RPC URL (default: ETH_RPC_URL)")
    monitor_parser.add_argument("--interval", type=float, default=None, help="Seconds between status checks")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "info":
        print(json.dumps(settings.get_safe_dict(), indent=2))
        return 0

    try:
        if args.command == "address":
            return asyncio.run(show_address())
        if args.command == "sign-test":
            return asyncio.run(sign_test(args.chain_id))
        if args.command == "monitor":
            confirmations = (
                args.confirmations if args.confirmations is not None else settings.required_confirmations
            )
            return asyncio.run(monitor_transaction(args.tx_id, confirmations, args.rpc_url, args.interval))
    except (SigningError, MonitorError, CustodyError, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    return 2


if __name__ == "__main__":
    sys.exit(main())
