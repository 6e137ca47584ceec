#!/usr/bin/env python
"""Dump the maintenance API OpenAPI document, or fingerprint it for CI.

  python -m scripts.generate_spec                 print the sha256 fingerprint
  python -m scripts.generate_spec --out api.json  write the document
  python -m scripts.generate_spec --summary       one line per operation with its permissions
  python -m scripts.generate_spec --check         compare against tests/openapi_spec_hash.txt (exit 2 on drift)
  python -m scripts.generate_spec --update-hash   rewrite that snapshot
"""
from __future__ import annotations
import argparse
import hashlib
import json
import pathlib
import sys
from typing import Iterator, Tuple

BACKEND = pathlib.Path(__file__).resolve().parents[1]
SNAPSHOT = BACKEND / 'tests' / 'openapi_spec_hash.txt'

if str(BACKEND) not in sys.path:
    sys.path.append(str(BACKEND))

from app.openapi import build_openapi_spec  # type: ignore  # noqa: E402


def fingerprint(spec: dict) -> str:
    blob = json.dumps(spec, sort_keys=True, separators=(',', ':')).encode()
    return hashlib.sha256(blob).hexdigest()


def compute_spec_and_hash():
    spec = build_openapi_spec()
    return spec, fingerprint(spec)


def iter_operations(spec: dict) -> Iterator[Tuple[str, str, str]]:
    for path in sorted(spec.get('paths', {})):
        for method, op in sorted(spec['paths'][path].items()):
            if not isinstance(op, dict) or 'responses' not in op:
                continue
            perms = op.get('x-required-permissions') or sorted(set(op.get('x-action-permissions', {}).values()))
            yield method.upper(), path, ','.join(perms) or '-'


def _check(digest: str) -> int:
    if not SNAPSHOT.exists():
        print(f'no snapshot at {SNAPSHOT}; run with --update-hash first', file=sys.stderr)
        return 3
    expected = SNAPSHOT.read_text().strip()
    if digest != expected:
        print(f'spec drifted: snapshot={expected} current={digest}', file=sys.stderr)
        return 2
    print(f'spec unchanged: {digest}')
    return 0


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser(description='Maintenance API OpenAPI tooling')
    p.add_argument('--out', help='write the JSON document to this path')
    p.add_argument('--summary', action='store_true', help='list operations and required permissions')
    p.add_argument('--check', action='store_true', help='fail when the fingerprint differs from the snapshot')
    p.add_argument('--update-hash', action='store_true', help='overwrite the snapshot fingerprint')
    args = p.parse_args(argv)

    spec, digest = compute_spec_and_hash()
    acted = False
    if args.out:
        target = pathlib.Path(args.out)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(spec, indent=2, sort_keys=True) + '\n')
        print(f'wrote {target}')
        acted = True
    if args.summary:
        for method, path, perms in iter_operations(spec):
            print(f'{method:<6} {path:<40} {perms}')
        acted = True
    if args.check:
        status = _check(digest)
        if status:
            return status
        acted = True
    if args.update_hash:
        SNAPSHOT.write_text(digest + '\n')
        print(f'snapshot -> {digest}')
        acted = True
    if not acted:
        print(digest)
    return 0


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
