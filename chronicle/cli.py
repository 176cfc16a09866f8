#!/usr/bin/env python3
"""
Chronicle key and client provisioning.

Usage:
    chronicle-admin keygen --out local/ --name laptop
    chronicle-admin add-client laptop "$(cat local/laptop.pub)" --admin
    chronicle-admin sign --key local/laptop.key --client-id laptop --method GET --path /chronicle/client/whoami
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from chronicle.core.config import get_settings
from chronicle.core.paths import CONFIG_DIR
from chronicle.core.signing.keys import generate_keypair, load_private_key, public_key_to_base64, save_keypair
from chronicle.core.signing.registry import add_client_to_yaml
from chronicle.core.signing.verify import sign_request

logger = logging.getLogger(__name__)


def cmd_keygen(args: argparse.Namespace) -> int:
    private_key, public_key = generate_keypair()
    private_path, public_path = save_keypair(private_key, Path(args.out), name=args.name)
    print(f"Private key: {private_path}")
    print(f"Public key:  {public_path}")
    print(public_key_to_base64(public_key))
    return 0


def cmd_add_client(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.instance and args.instance not in settings.instances:
        raise ValueError(f"Unknown instance '{args.instance}'; configure it in INSTANCES")
    if settings.database_url and not args.config:
        from chronicle.core.database import DatabaseClientDirectory, init_db
        directory = DatabaseClientDirectory(init_db(settings.database_url))
        if args.instance:
            directory = directory.for_prefix(settings.instances[args.instance])
        directory.register_client(args.client_id, args.public_key, is_admin=args.admin, comment=args.description)
    elif args.instance:
        raise ValueError("--instance needs DATABASE_URL; clients.yaml has no instances")
    else:
        config_path = args.config or settings.clients_config_path or str(CONFIG_DIR / "clients.yaml")
        add_client_to_yaml(config_path, args.client_id, args.public_key, is_admin=args.admin, description=args.description)
    print(f"Registered client '{args.client_id}' (admin={args.admin})")
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    private_key = load_private_key(Path(args.key))
    body = args.body.encode("utf-8") if args.body else b""
    headers = sign_request(private_key, args.method, args.path, body)
    headers[get_settings().client_header_name] = args.client_id
    print(json.dumps(headers, indent=2, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chronicle-admin",
        description="Manage Chronicle signing keys and clients",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen = subparsers.add_parser("keygen", help="Generate an Ed25519 keypair")
    keygen.add_argument("--out", default="local", help="Directory for the key files (default: local)")
    keygen.add_argument("--name", default="signing", help="Base name for the key files (default: signing)")
    keygen.set_defaults(func=cmd_keygen)

    add_client = subparsers.add_parser("add-client", help="Register a client public key")
    add_client.add_argument("client_id", help="Value clients send in the client header")
    add_client.add_argument("public_key", help="Base64-encoded Ed25519 public key")
    add_client.add_argument("--admin", action="store_true", help="Allow admin endpoints")
    add_client.add_argument("--description", default="", help="Free-text description")
    add_client.add_argument("--config", help="clients.yaml to write (default: CONFIG_DIR/clients.yaml)")
    add_client.add_argument("--instance", help="Register in this instance's client table (database only)")
    add_client.set_defaults(func=cmd_add_client)

    sign = subparsers.add_parser("sign", help="Print signed request headers as JSON")
    sign.add_argument("--key", required=True, help="Client private key (PEM)")
    sign.add_argument("--client-id", required=True, help="Client identifier")
    sign.add_argument("--method", default="GET", help="HTTP method (default: GET)")
    sign.add_argument("--path", required=True, help="Request path including query string")
    sign.add_argument("--body", default="", help="Request body")
    sign.set_defaults(func=cmd_sign)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
