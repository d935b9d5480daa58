import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ...domain.errors import ActiveSubscriptionExists, StorageError
from ...domain.models import (
    Plan,
    PlanFeature,
    PlanLimits,
    Subscription,
    SubscriptionStatus,
    SubscriptionUpdate,
)
from ...domain.ports.persistence import PersistenceGateway

_ACTIVE_OWNER_INDEX = "idx_subscriptions_active_owner"

# Domain attribute -> column, where they differ.
_COLUMN_NAMES = {"interval": "billing_interval"}


class SQLitePersistence(PersistenceGateway):
    """SQLite-backed implementation of the persistence gateway."""

    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._conn:
            self._conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS plans (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    price REAL NOT NULL,
                    currency TEXT NOT NULL DEFAULT 'USD',
                    billing_interval TEXT NOT NULL DEFAULT 'monthly',
                    features TEXT NOT NULL DEFAULT '[]',
                    limits TEXT NOT NULL DEFAULT '{{}}',
                    stripe_price_id TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    business_id TEXT,
                    plan_id TEXT NOT NULL,
                    stripe_subscription_id TEXT UNIQUE,
                    stripe_customer_id TEXT,
                    status TEXT NOT NULL,
                    current_period_start TEXT,
                    current_period_end TEXT,
                    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
                    trial_start TEXT,
                    trial_end TEXT,
                    price REAL,
                    currency TEXT NOT NULL DEFAULT 'USD',
                    billing_interval TEXT,
                    features TEXT NOT NULL DEFAULT '[]',
                    limits TEXT NOT NULL DEFAULT '{{}}',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_subscriptions_user_id
                    ON subscriptions(user_id);

                CREATE UNIQUE INDEX IF NOT EXISTS {_ACTIVE_OWNER_INDEX}
                    ON subscriptions(user_id, IFNULL(business_id, ''))
                    WHERE is_active = 1;
                """
            )

    def close(self) -> None:
        self._conn.close()

    def ping(self) -> None:
        with self._guard(), self._lock:
            self._conn.execute("SELECT 1").fetchone()

    # PlanRepository API -----------------------------------------------------
    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._guard(), self._lock:
            cur = self._conn.execute(
                "SELECT * FROM plans WHERE id = ? AND is_active = 1", (plan_id,)
            )
            row = cur.fetchone()
        return self._row_to_plan(row) if row else None

    def save_plan(self, plan: Plan) -> None:
        """Upsert a catalog entry. Used by seeding tools, never by the lifecycle code."""
        with self._guard(), self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO plans (
                    id, name, price, currency, billing_interval, features,
                    limits, stripe_price_id, is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    price = excluded.price,
                    currency = excluded.currency,
                    billing_interval = excluded.billing_interval,
                    features = excluded.features,
                    limits = excluded.limits,
                    stripe_price_id = excluded.stripe_price_id,
                    is_active = excluded.is_active
                """,
                (
                    plan.id,
                    plan.name,
                    plan.price,
                    plan.currency,
                    plan.interval,
                    self._dump_features(plan.features),
                    json.dumps(plan.limits.to_dict()),
                    plan.stripe_price_id,
                    int(plan.is_active),
                ),
            )

    # SubscriptionRepository API --------------------------------------------
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with self._guard(), self._lock:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            )
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def find_active_by_user(self, user_id: str) -> Optional[Subscription]:
        with self._guard(), self._lock:
            cur = self._conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE user_id = ? AND is_active = 1
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def find_active_by_owner(
        self, user_id: str, business_id: Optional[str]
    ) -> Optional[Subscription]:
        with self._guard(), self._lock:
            cur = self._conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE user_id = ? AND IFNULL(business_id, '') = IFNULL(?, '')
                    AND is_active = 1
                LIMIT 1
                """,
                (user_id, business_id),
            )
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def find_by_external_ref(self, stripe_subscription_id: str) -> Optional[Subscription]:
        with self._guard(), self._lock:
            cur = self._conn.execute(
                "SELECT * FROM subscriptions WHERE stripe_subscription_id = ?",
                (stripe_subscription_id,),
            )
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    def create_subscription(self, subscription: Subscription) -> Subscription:
        now = self._now()
        with self._guard(), self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO subscriptions (
                    user_id, business_id, plan_id, stripe_subscription_id,
                    stripe_customer_id, status, current_period_start,
                    current_period_end, cancel_at_period_end, trial_start,
                    trial_end, price, currency, billing_interval, features,
                    limits, is_active, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    subscription.user_id,
                    subscription.business_id,
                    subscription.plan_id,
                    subscription.stripe_subscription_id,
                    subscription.stripe_customer_id,
                    subscription.status.value,
                    self._format_datetime(subscription.current_period_start),
                    self._format_datetime(subscription.current_period_end),
                    int(subscription.cancel_at_period_end),
                    self._format_datetime(subscription.trial_start),
                    self._format_datetime(subscription.trial_end),
                    subscription.price,
                    subscription.currency,
                    subscription.interval,
                    self._dump_features(subscription.features),
                    json.dumps(subscription.limits.to_dict()),
                    int(subscription.is_active),
                    now,
                    now,
                ),
            )
            subscription_id = cur.lastrowid
            cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            row = cur.fetchone()
        if not row:
            raise StorageError("Failed to persist subscription.")
        return self._row_to_subscription(row)

    def update_subscription(
        self, subscription_id: int, changes: SubscriptionUpdate
    ) -> Optional[Subscription]:
        updates = []
        params: List[Any] = []
        for name, value in changes.changes().items():
            updates.append(f"{_COLUMN_NAMES.get(name, name)} = ?")
            params.append(self._to_column(name, value))
        updates.append("updated_at = ?")
        params.append(self._now())
        params.append(subscription_id)
        statement = f"UPDATE subscriptions SET {', '.join(updates)} WHERE id = ?"
        with self._guard(), self._lock, self._conn:
            self._conn.execute(statement, params)
            cur = self._conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
            row = cur.fetchone()
        return self._row_to_subscription(row) if row else None

    # Helpers ----------------------------------------------------------------
    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as exc:
            if _ACTIVE_OWNER_INDEX in str(exc):
                raise ActiveSubscriptionExists() from exc
            raise StorageError(f"Integrity violation: {exc}") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Subscription store unavailable: {exc}") from exc

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _format_datetime(value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            result = datetime.fromisoformat(value)
        except ValueError:
            # Fallback for legacy formats without 'T'
            result = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        if result.tzinfo is None:
            return result.replace(tzinfo=timezone.utc)
        return result.astimezone(timezone.utc)

    @staticmethod
    def _dump_features(features: List[PlanFeature]) -> str:
        return json.dumps([feature.to_dict() for feature in features])

    def _to_column(self, name: str, value: Any) -> Any:
        if isinstance(value, SubscriptionStatus):
            return value.value
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return self._format_datetime(value)
        if name == "features":
            return self._dump_features(value)
        if name == "limits":
            return json.dumps(value.to_dict())
        return value

    @staticmethod
    def _load_features(raw: str) -> List[PlanFeature]:
        return [PlanFeature.from_dict(item) for item in json.loads(raw or "[]")]

    @staticmethod
    def _load_limits(raw: str) -> PlanLimits:
        data: Dict[str, Any] = json.loads(raw or "{}")
        return PlanLimits.from_dict(data)

    def _row_to_plan(self, row: sqlite3.Row) -> Plan:
        return Plan(
            id=row["id"],
            name=row["name"],
            price=row["price"],
            currency=row["currency"],
            interval=row["billing_interval"],
            features=self._load_features(row["features"]),
            limits=self._load_limits(row["limits"]),
            stripe_price_id=row["stripe_price_id"],
            is_active=bool(row["is_active"]),
        )

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            user_id=row["user_id"],
            business_id=row["business_id"],
            plan_id=row["plan_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            stripe_customer_id=row["stripe_customer_id"],
            status=SubscriptionStatus(row["status"]),
            current_period_start=self._parse_datetime(row["current_period_start"]),
            current_period_end=self._parse_datetime(row["current_period_end"]),
            cancel_at_period_end=bool(row["cancel_at_period_end"]),
            trial_start=self._parse_datetime(row["trial_start"]),
            trial_end=self._parse_datetime(row["trial_end"]),
            price=row["price"],
            currency=row["currency"],
            interval=row["billing_interval"],
            features=self._load_features(row["features"]),
            limits=self._load_limits(row["limits"]),
            is_active=bool(row["is_active"]),
            created_at=self._parse_datetime(row["created_at"]),
            updated_at=self._parse_datetime(row["updated_at"]),
        )
