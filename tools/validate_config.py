#!/usr/bin/env python3
"""
Configuration validation CLI tool

Validates scanner YAML configuration files against the schema and flags
settings that are valid but likely unintended.
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from amm_arb.config_schema import EngineSchema, validate_config_file


def collect_warnings(config: EngineSchema) -> List[str]:
    """Checks for configurations that validate but will not behave as expected."""
    warnings = []
    conn = config.connection

    if config.scan.safety_margin_rate == 0:
        warnings.append("scan.safety_margin_rate is 0 - no margin for price movement")

    ws_available = conn.ws_url or (conn.ws_url_env and os.getenv(conn.ws_url_env))
    http_available = conn.http_url or (conn.http_url_env and os.getenv(conn.http_url_env))
    if not ws_available and not http_available:
        warnings.append("No RPC endpoint configured or found in the environment")
    elif not ws_available:
        warnings.append("No streaming endpoint - running on the polling fallback only")
    elif not http_available:
        warnings.append("No fallback endpoint - the scanner fails once reconnects are exhausted")

    if conn.max_reconnect_attempts == 0:
        warnings.append("max_reconnect_attempts is 0 - any disconnect degrades immediately")

    venue_kinds = {venue.name: venue.kind for venue in config.venues}
    for pair in config.pairs:
        pool_count = sum(
            len(pool) if isinstance(pool, dict) else 1 for pool in pair.pools.values()
        )
        if pool_count < 2 and not config.discovery.enabled:
            warnings.append(
                f"Pair {'/'.join(pair.tokens)} has {pool_count} pool(s) - nothing to compare"
            )

    for path in config.paths:
        if not path.pools and not config.discovery.enabled:
            warnings.append(f"Path {'->'.join(path.tokens)} has no hop pools")

    if config.paths and "v3" in venue_kinds.values():
        tier = config.scan.triangular_fee_tier
        if tier not in (100, 500, 3000, 10000):
            warnings.append(f"triangular_fee_tier {tier} is not a standard V3 fee tier")

    if config.reference_price.source == "static":
        warnings.append(
            "reference_price is static - quote-currency profit uses a fixed price"
        )

    return warnings


def validate_single_config(config_path: Path, verbose: bool = False) -> Dict[str, Any]:
    """
    Validate a single configuration file

    Returns:
        Dictionary with validation results
    """
    result = {
        "file": str(config_path),
        "valid": False,
        "errors": [],
        "warnings": [],
        "config": None,
    }

    try:
        config = validate_config_file(config_path)
        result["valid"] = True
        result["config"] = config.model_dump() if verbose else None
        result["warnings"] = collect_warnings(config)

    except FileNotFoundError as e:
        result["errors"].append(f"File not found: {e}")
    except yaml.YAMLError as e:
        result["errors"].append(f"YAML parsing error: {e}")
    except ValidationError as e:
        result["errors"].append(f"Validation error: {e}")
    except ValueError as e:
        result["errors"].append(str(e))

    return result


def find_config_files(directory: Path, pattern: str = "*.yaml") -> List[Path]:
    """Find configuration files in a directory"""
    if not directory.exists():
        return []

    config_files = [p for p in directory.rglob(pattern) if p.is_file()]
    if pattern == "*.yaml":
        config_files += [p for p in directory.rglob("*.yml") if p.is_file()]
    return sorted(config_files)


def print_validation_results(
    results: List[Dict[str, Any]], verbose: bool = False, json_output: bool = False
):
    """Print validation results in human-readable or JSON format"""

    if json_output:
        print(json.dumps(results, indent=2, default=str))
        return

    valid_files = sum(1 for r in results if r["valid"])

    print("\n=== Configuration Validation Results ===")
    print(f"Total files: {len(results)}")
    print(f"Valid files: {valid_files}")
    print(f"Invalid files: {len(results) - valid_files}")
    print("=" * 40)

    for result in results:
        status = "✓ VALID" if result["valid"] else "✗ INVALID"
        print(f"\n{status}: {result['file']}")

        if result["errors"]:
            print("  Errors:")
            for error in result["errors"]:
                print(f"    - {error}")

        if result["warnings"]:
            print("  Warnings:")
            for warning in result["warnings"]:
                print(f"    - {warning}")

        if verbose and result["valid"] and result["config"]:
            config = result["config"]
            print("  Configuration summary:")
            print(f"    - Settlement token: {config['settlement_token']}")
            print(f"    - Venues: {', '.join(v['name'] for v in config['venues'])}")
            print(f"    - Pairs: {len(config['pairs'])}, paths: {len(config['paths'])}")
            print(f"    - Kinds: {', '.join(config['scan']['kinds'])}")


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Validate AMM scanner configuration files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a single configuration file
  python tools/validate_config.py configs/mainnet.yaml

  # Validate all configurations in a directory
  python tools/validate_config.py --directory configs/

  # Output results as JSON and fail on any invalid file
  python tools/validate_config.py --json --strict configs/mainnet.yaml
        """,
    )
    parser.add_argument("config_files", nargs="*", help="Configuration file(s) to validate")
    parser.add_argument(
        "--directory", "-d", type=Path, help="Directory to search for configuration files"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show configuration summary"
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results in JSON format")
    parser.add_argument(
        "--strict",
        "-s",
        action="store_true",
        help="Exit with error code if any configuration is invalid",
    )
    parser.add_argument(
        "--pattern",
        "-p",
        default="*.yaml",
        help="File pattern to search for when using --directory (default: *.yaml)",
    )

    args = parser.parse_args()

    if args.config_files and args.directory:
        print("Error: Cannot specify both config files and directory")
        return 1
    elif args.config_files:
        config_paths = [Path(f) for f in args.config_files]
    elif args.directory:
        config_paths = find_config_files(args.directory, args.pattern)
        if not config_paths:
            print(
                f"No configuration files found in {args.directory} matching pattern '{args.pattern}'"
            )
            return 1
    else:
        print("Error: Must specify either config files or directory")
        return 1

    results = [validate_single_config(path, verbose=args.verbose) for path in config_paths]
    print_validation_results(results, verbose=args.verbose, json_output=args.json)

    invalid_count = sum(1 for r in results if not r["valid"])
    if args.strict and invalid_count > 0:
        if not args.json:
            print(f"\nValidation failed: {invalid_count} invalid configuration(s) found")
        return 1

    if not args.json:
        print(f"\nValidation complete: {len(results) - invalid_count}/{len(results)} configurations valid")

    return 0


if __name__ == "__main__":
    sys.exit(main())
