"""Load plan catalog entries from a JSON file into the local SQLite store.

Usage: python scripts/seed_plans.py plans.json
"""

import json
import logging
import sys
from pathlib import Path

from subscription_hub.core.config import Settings
from subscription_hub.core.logging import configure_logging
from subscription_hub.domain.models import Plan, PlanFeature, PlanLimits
from subscription_hub.infrastructure.persistence.sqlite import SQLitePersistence

logger = logging.getLogger("seed_plans")


def main() -> None:
    if len(sys.argv) != 2:
        raise SystemExit("Usage: seed_plans.py <plans.json>")

    settings = Settings()
    configure_logging(settings.log_level)
    entries = json.loads(Path(sys.argv[1]).read_text(encoding="utf-8"))

    persistence = SQLitePersistence(settings.database_path)
    try:
        for entry in entries:
            plan = Plan(
                id=str(entry["id"]),
                name=entry["name"],
                price=float(entry["price"]),
                currency=entry.get("currency", "USD"),
                interval=entry.get("interval", "monthly"),
                features=[PlanFeature.from_dict(item) for item in entry.get("features", [])],
                limits=PlanLimits.from_dict(entry.get("limits")),
                stripe_price_id=entry.get("stripePriceId") or entry.get("stripe_price_id"),
                is_active=bool(entry.get("isActive", True)),
            )
            persistence.save_plan(plan)
            logger.info("Saved plan %s (%s)", plan.id, plan.name)
    finally:
        persistence.close()


if __name__ == "__main__":
    main()
