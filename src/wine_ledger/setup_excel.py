"""Utility for initializing the wine ledger master workbook.

The module doubles as a console script (``wine-ledger-setup``) and as a
library used by tests. It reads the same ``config.ini`` as the ledger CLI and
writes a workbook holding every sheet with its header row, plus the default
shop so a first day can be opened immediately.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import CREDIT_SHEETS, SHEET_COLUMNS, SheetName

CONFIG_FILE = "config.ini"


def create_master_workbook(
    destination: Path,
    *,
    default_shop_id: str,
    default_shop_name: str,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    include_credit_sheets: bool = True,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    Args:
        destination (Path): Target ``.xlsx`` path; parent folders are created.
        default_shop_id (str): Identifier of the shop seeded into ``Shops``.
        default_shop_name (str): Display name of the seeded shop.
        sheet_columns (Mapping[str, Sequence[str]]): Sheet schema to write.
        include_credit_sheets (bool): When ``False`` the optional credit and
            debtor sheets are left out, disabling that subsystem.
        overwrite (bool): Replace an existing file instead of refusing.

    Returns:
        Path: Resolved path of the written workbook.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook = openpyxl.Workbook()

    # Drop the default sheet openpyxl generates so ours come first.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in _selected_sheets(sheet_columns, include_credit_sheets):
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook[SheetName.SHOPS.value].append([default_shop_id, default_shop_name])

    workbook.save(destination)
    log.info("Created master workbook '%s'", destination)
    return destination


def _selected_sheets(
    sheet_columns: Mapping[str, Sequence[str]],
    include_credit_sheets: bool,
) -> Iterable[tuple[str, Sequence[str]]]:
    for sheet_name, columns in sheet_columns.items():
        if not include_credit_sheets and sheet_name in CREDIT_SHEETS:
            continue
        yield sheet_name, columns


def run_from_config(config_path: Path, *, overwrite: bool = False, shop_name: Optional[str] = None) -> Path:
    """Create the workbook named in ``config_path``.

    The default shop comes from ``[Defaults] DefaultShop``; its display name
    falls back to ``[System] BusinessName``.
    """

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_master_workbook(
        settings.data_file,
        default_shop_id=settings.default_shop_id,
        default_shop_name=shop_name or settings.business_name,
        include_credit_sheets=settings.credit_entries_enabled,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the wine ledger data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--shop-name",
        default=None,
        help="Display name for the default shop (default: BusinessName).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup console script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Wine Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, shop_name=args.shop_name)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
