"""CLI entry point: python main.py registry --encrypted prices.json"""

import argparse
import sys

from clustermeter.crypto import PriceCipher
from clustermeter.exceptions import MeteringError
from clustermeter.logging_config import MeteringContext, configure_logging
from clustermeter.resources import DEFAULT_REGISTRY, Quantity, compute_amount, normalized_units
from clustermeter.resources.bootstrap import bootstrap_registry, load_registry, read_encrypted_types
from clustermeter.settings import get_settings


def _active_registry(encrypted_file=None):
    if encrypted_file:
        settings = get_settings()
        return load_registry(
            read_encrypted_types(encrypted_file),
            PriceCipher(settings.price_encryption_key),
        )
    return bootstrap_registry()


def cmd_encrypt_price(args):
    print(PriceCipher().encrypt_int64(args.price))


def cmd_normalize(args):
    print(normalized_units(args.resource, Quantity.parse(args.quantity)))


def cmd_registry(args):
    registry = _active_registry(args.encrypted)
    source = "defaults" if registry is DEFAULT_REGISTRY else "configured"
    print(f"Price registry ({source}):")
    print(f"  {'NAME':<24} {'ENUM':>4} {'TYPE':<4} {'UNIT':<6} {'UNIT PRICE':>12}")
    for prop in registry:
        print(
            f"  {prop.name:<24} {prop.enum:>4} {prop.price_type.value:<4} "
            f"{prop.unit_string:<6} {prop.unit_price:>12}"
        )


def cmd_price(args):
    registry = _active_registry(args.encrypted)
    print(compute_amount(args.property, args.amount, registry))


def build_parser():
    parser = argparse.ArgumentParser(
        description="Clustermeter - resource metering and billing core"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("encrypt-price", help="Encrypt an integer unit price")
    p.add_argument("price", type=int, help="Unit price in price units")
    p.set_defaults(func=cmd_encrypt_price)

    p = sub.add_parser("normalize", help="Convert a quantity to billing units")
    p.add_argument("resource", help="Resource kind (cpu, memory, storage, network, nvidia.com/gpu, gpu-<product>)")
    p.add_argument("quantity", help='Quantity such as "1500m" or "256Mi"')
    p.set_defaults(func=cmd_normalize)

    p = sub.add_parser("registry", help="Print the active price registry")
    p.add_argument("--encrypted", metavar="FILE", default=None,
                   help="JSON file of properties with encrypted unit prices")
    p.set_defaults(func=cmd_registry)

    p = sub.add_parser("price", help="Price an amount of billing units of a property")
    p.add_argument("property", help="Property name")
    p.add_argument("amount", type=int, help="Usage in billing units")
    p.add_argument("--encrypted", metavar="FILE", default=None,
                   help="JSON file of properties with encrypted unit prices")
    p.set_defaults(func=cmd_price)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging()

    with MeteringContext() as ctx:
        ctx.bind(command=args.command)
        try:
            args.func(args)
        except (MeteringError, OSError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
