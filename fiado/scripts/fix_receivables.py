"""
Corrige parcelas de vendas importadas fora de sincronia com o valor pago.

Uso:
  python -m fiado.scripts.fix_receivables           # só mostra
  python -m fiado.scripts.fix_receivables --apply   # corrige
"""
from __future__ import annotations

import argparse
import logging

from fiado.infra.db import SessionLocal
from fiado.services.money import format_brl
from fiado.services.repair_service import apply_repairs, preview_repairs


def main() -> None:
    parser = argparse.ArgumentParser(description="Corrige parcelas de vendas importadas.")
    parser.add_argument("--apply", action="store_true", help="grava as correções")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    db = SessionLocal()
    try:
        if not args.apply:
            needs_fix = preview_repairs(db)
            for c in needs_fix:
                print(
                    f"venda {c.sale_id} ({c.client_name}): pago {format_brl(c.sale_paid_amount)}, "
                    f"parcelas {format_brl(c.receivables_paid_total)}, "
                    f"esperado {format_brl(c.expected_receivables_paid)}"
                )
            print(f"{len(needs_fix)} venda(s) precisam de correção.")
            return

        result = apply_repairs(db)
        for err in result.errors:
            print(f"ERRO venda {err.sale_id} ({err.client_name}): {err.error}")
        print(f"OK: {result.fixed} corrigida(s), {result.skipped} pulada(s), {len(result.errors)} erro(s).")
    finally:
        db.close()


if __name__ == "__main__":
    main()
