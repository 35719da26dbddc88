#!/usr/bin/env python3
"""
Check that this host can reach the source attendance database and read employees.
Run from the project root: python scripts/verify_source_connectivity.py [--json]

Exit 0 = OK, exit 1 = failure.
"""
from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'backend'))

from sitesync.core.config import settings  # noqa: E402
from sitesync.services.source_client import build_employee_source, source_configured  # noqa: E402


def verify_source_connectivity(json_output: bool = False) -> int:
    result = {
        'ok': False,
        'source_ok': False,
        'site_cd': settings.source_site_cd,
        'employees': None,
        'latency_ms': None,
        'error': None,
    }
    if not source_configured():
        result['error'] = 'SOURCE_NOT_CONFIGURED'
        message = 'SOURCE_DB_HOST and SOURCE_DB_USER are required in .env'
    else:
        source = build_employee_source()
        start = time.time()
        try:
            if not source.ping():
                result['error'] = 'SOURCE_UNREACHABLE'
                message = f'no answer from {settings.source_db_host}:{settings.source_db_port}'
            else:
                _, total = source.get_all_employees_paginated(0, 1)
                result.update({'ok': True, 'source_ok': True, 'employees': total})
                message = f'source reachable, {total} employees for site {settings.source_site_cd}'
        except Exception as exc:
            result['error'] = 'QUERY_FAILED'
            message = str(exc)
        finally:
            result['latency_ms'] = round((time.time() - start) * 1000, 2)
            source.pool.discard()
    result['message'] = message

    if json_output:
        print(json.dumps(result, ensure_ascii=False, indent=2))
    else:
        print(f"[{'OK' if result['ok'] else 'ERROR'}] {message}")
    return 0 if result['ok'] else 1


def main() -> int:
    parser = argparse.ArgumentParser(description='Verify connectivity to the source attendance database')
    parser.add_argument('--json', action='store_true', help='print the result as JSON')
    args = parser.parse_args()
    return verify_source_connectivity(json_output=args.json)


if __name__ == '__main__':
    raise SystemExit(main())
