"""Script opérateur de relance des jobs en dead-letter.

Liste les enregistrements dead-letter (filtrables par raison) et relance les jobs sélectionnés.
Sort avec un code non nul si au moins une relance a échoué.

Exemples:
    python scripts/requeue_dead_letters.py --list
    python scripts/requeue_dead_letters.py --reason timeout --max-items 20
    python scripts/requeue_dead_letters.py --job-id 3f2c... --dry-run
"""

from __future__ import annotations

import argparse
import sys

from physim.core.container import container
from physim.domain.entities import FailureReason
from physim.domain.errors import JobNotFoundError


def main(argv: list[str] | None = None) -> int:
    """Relance les jobs en dead-letter; retourne 1 si des relances ont échoué."""
    parser = argparse.ArgumentParser(description="Requeue dead-lettered generation jobs")
    parser.add_argument("--job-id", action="append", default=[], help="job to requeue (repeatable)")
    parser.add_argument("--reason", choices=[r.value for r in FailureReason], default=None)
    parser.add_argument("--max-items", type=int, default=100)
    parser.add_argument("--list", action="store_true", help="only list dead-letter records")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    jobs = container.job_orchestrator
    records = jobs.list_dead_letters(limit=max(1, args.max_items))
    if args.reason:
        records = [r for r in records if r.reason.value == args.reason]
    if args.list:
        for r in records:
            print(f"{r.job_id}\t{r.reason.value}\tattempts={r.attempts}\t{r.detail[:80]}")
        print(f"count={len(records)}")
        return 0

    targets = args.job_id or [r.job_id for r in records]
    requeued = failed = 0
    for job_id in targets:
        if args.dry_run:
            print(f"would_requeue={job_id}")
            continue
        try:
            jobs.requeue_dead_letter(job_id)
            requeued += 1
        except JobNotFoundError:
            print(f"not_found={job_id}", file=sys.stderr)
            failed += 1
    print(f"requeued={requeued} failed={failed}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
