"""
Export the FEC ledger file of a tenant for a period.

Usage:
    python scripts/export_fec.py TENANT_ID 2026-01-01 2026-12-31
    python scripts/export_fec.py TENANT_ID 2026-01-01 2026-12-31 --encoding cp1252 --output /tmp/fec.txt
"""

import argparse
import asyncio
import logging
import os
import sys
import tempfile
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.database import async_session_maker, close_db
from ledgerseal.services.ledger_export import ExportEncoding, LedgerExportService, period_filename
from ledgerseal.utils.error_handling import AppException, LedgerExportException

logger = logging.getLogger(__name__)


def write_atomically(path: Path, content: bytes) -> None:
    """Write to a temporary sibling file, then rename it over the target."""
    temp_name = None
    try:
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", delete=False) as handle:
            temp_name = handle.name
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except OSError as e:
        if temp_name and os.path.exists(temp_name):
            os.unlink(temp_name)
        logger.error(f"Could not write FEC export to {path}: {e}")
        raise LedgerExportException(
            f"could not write {path}",
            original_error=e,
            details={"path": str(path)},
        ) from e


async def export_fec(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    start_date: date,
    end_date: date,
    encoding: ExportEncoding = ExportEncoding.UTF8,
    output: Optional[Path] = None,
) -> Dict[str, Any]:
    """Write the period export to disk and return size metrics."""
    service = LedgerExportService(db)
    tenant = await service.get_tenant(tenant_id)
    content = await service.export_period(tenant_id, start_date, end_date, encoding)

    path = output or Path(period_filename(tenant.siret, start_date, end_date))
    write_atomically(path, content)
    logger.info(f"FEC export for tenant {tenant_id} written to {path} ({len(content)} bytes)")

    return {
        "path": str(path),
        "size_bytes": len(content),
        # Header line included
        "lines": content.count(b"\r\n") + 1 if content else 0,
        "encoding": encoding.value,
    }


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export the FEC ledger file of a period")
    parser.add_argument("tenant_id", type=uuid.UUID, help="Tenant UUID")
    parser.add_argument("start_date", type=date.fromisoformat, help="First day (YYYY-MM-DD)")
    parser.add_argument("end_date", type=date.fromisoformat, help="Last day (YYYY-MM-DD)")
    parser.add_argument(
        "--encoding",
        choices=[e.value for e in ExportEncoding],
        default=ExportEncoding.UTF8.value,
        help="Output character set",
    )
    parser.add_argument("--output", type=Path, help="Output file (defaults to the statutory file name)")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        async with async_session_maker() as db:
            metrics = await export_fec(
                db,
                args.tenant_id,
                args.start_date,
                args.end_date,
                ExportEncoding(args.encoding),
                args.output,
            )
    except AppException as e:
        print(f"Export failed: {e.message}", file=sys.stderr)
        return 1
    finally:
        await close_db()

    print(f"FEC export written to {metrics['path']}")
    print(f"  Size: {metrics['size_bytes']} bytes")
    print(f"  Lines: {metrics['lines']} (header included)")
    print(f"  Encoding: {metrics['encoding']}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    sys.exit(asyncio.run(main()))
