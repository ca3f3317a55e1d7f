"""Pre-deploy check for the connector's environment file.

Three things are verified:

1. ``AppSettings`` loads from the given ``.env``: Google OAuth client, session
   secret and plan overrides all parse.
2. The selected key-value backend is usable. The hosted REST store needs both
   ``UPSTASH_KV_REST_URL`` and ``UPSTASH_KV_REST_TOKEN``.
3. Optionally, the file still matches a recorded SHA256 baseline, so a changed
   ``SESSION_ENCRYPTION_SECRET`` (which logs every user out) is caught before
   a restart rather than after.

With ``--strict`` the session secret must be at least 32 characters and
cookies must be ``Secure`` outside development.

Example usages::

    python -m scripts.check_env record --env-file /srv/analytics-connector/.env \
        --hash-file /srv/analytics-connector/.env.sha256

    python -m scripts.check_env verify --strict --env-file /srv/analytics-connector/.env \
        --hash-file /srv/analytics-connector/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable, List

from pydantic import ValidationError

from app.clients.kv_store import KVNotConfiguredError, RestKVClient
from app.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_SECURITY_ERROR = 4
EXIT_RUNTIME_ERROR = 5

MIN_SECRET_LENGTH = 32


def _sha256(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    """Load ``env_file`` into the process environment and build settings from it."""
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _check_kv_backend(settings: AppSettings) -> None:
    if settings.kv.backend == "rest":
        RestKVClient.from_settings(settings.kv)


def security_findings(settings: AppSettings) -> List[str]:
    """Return human-readable problems with session hardening settings."""
    findings: List[str] = []
    if len(settings.security.session_encryption_secret) < MIN_SECRET_LENGTH:
        findings.append(
            f"SESSION_ENCRYPTION_SECRET is shorter than {MIN_SECRET_LENGTH} characters."
        )
    if settings.environment != "development" and not settings.session.cookie_secure:
        findings.append(
            f"SESSION_COOKIE_SECURE is off in the {settings.environment!r} environment."
        )
    return findings


def _record(env_file: Path, hash_file: Path) -> int:
    checksum = _sha256(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Run the 'record' command first to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _sha256(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "A changed session secret invalidates every cookie; confirm before restarting.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


_COMMANDS = {
    "record": ("Validate settings and store the checksum baseline.", True),
    "verify": ("Validate settings and compare the checksum with the baseline.", True),
    "check": ("Validate settings without touching any checksum files.", False),
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate connector settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, (help_text, needs_hash_file) in _COMMANDS.items():
        subparser = subparsers.add_parser(name, help=help_text)
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )
        subparser.add_argument(
            "--strict",
            action="store_true",
            help="Also fail on weak session secrets and insecure cookies.",
        )
        if needs_hash_file:
            subparser.add_argument(
                "--hash-file",
                required=True,
                type=Path,
                help="Checksum baseline location.",
            )

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    try:
        settings = _load_settings(env_file)
        _check_kv_backend(settings)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except KVNotConfiguredError as exc:
        print(f"Key-value store validation failed: {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    findings = security_findings(settings)
    for finding in findings:
        print(f"warning: {finding}", file=sys.stderr)
    if findings and args.strict:
        return EXIT_SECURITY_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record(env_file, args.hash_file),
        "verify": lambda: _verify(env_file, args.hash_file),
        "check": lambda: EXIT_OK,
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
