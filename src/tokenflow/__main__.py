import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from tokenflow.config import load_config
from tokenflow.errors import TokenflowError
from tokenflow.executor import RetryExecutor
from tokenflow.ledger import connect
from tokenflow.logging_config import setup_logging
from tokenflow.models import RetryPolicy


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="tokenflow")
    parser.add_argument("-c", "--config", type=Path, help="Path to config.toml (default: packaged).")
    parser.add_argument("-n", "--network", help="Override the network: memory, local, testnet.")
    parser.add_argument("--env-file", type=Path, default=None, help="dotenv file to load (default: ./.env).")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP control surface.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    run = sub.add_parser("run", help="Run an end-to-end scenario.")
    run.add_argument("scenario", choices=["fungible", "nft"])

    balance = sub.add_parser("balance", help="Query an account balance.")
    balance.add_argument("account_id")

    sub.add_parser("probe", help="Wait until the configured node answers.")

    return parser.parse_args(argv)


async def _run_scenario(config, name: str) -> dict:
    from tokenflow.scenarios import Scenarios

    client = connect(config)
    try:
        scenarios = Scenarios(config, client)
        result = await (scenarios.fungible() if name == "fungible" else scenarios.nft())
        return result.to_dict()
    finally:
        await client.close()


async def _balance(config, account_id: str) -> dict:
    client = connect(config)
    try:
        bal = await RetryExecutor(RetryPolicy.from_config(config)).balance(client, account_id)
        return {"account_id": bal.account_id, "native": bal.native, "tokens": dict(bal.tokens)}
    finally:
        await client.close()


async def _probe(config) -> dict:
    if config.network == "memory" and not config.nodes:
        return {"network": "memory", "status": "ok"}
    from tokenflow.xrpl_ledger import probe_node

    results = {}
    for name, url in config.rpc_urls.items():
        info = await probe_node(url, max_retries=config.max_attempts, retry_delay=config.backoff)
        results[name] = info.get("info", {}).get("server_state", "unknown")
    return results


def main(argv=None) -> int:
    args = parse_args(argv)
    load_dotenv(args.env_file)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config)
        if args.network:
            config = config.replace(network=args.network)

        if args.command == "serve":
            import uvicorn
            from tokenflow.app import create_app

            uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)
            return 0
        if args.command == "run":
            out = asyncio.run(_run_scenario(config, args.scenario))
        elif args.command == "balance":
            out = asyncio.run(_balance(config, args.account_id))
        else:
            out = asyncio.run(_probe(config))
    except TokenflowError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(out, indent=2, default=str))
    return 0 if not out.get("error") else 1


if __name__ == "__main__":
    sys.exit(main())
