# commission/rates.py
import time
from decimal import Decimal
from typing import Dict, Any, List, Optional, NamedTuple
from flask import current_app

from extensions import db
from models import CommissionSetting
from utils import round_money, parse_int, parse_amount
from commission.exceptions import ValidationError
from logger import commission_logger


MAX_LEVEL = 5
EXAMPLE_BASE_AMOUNT = Decimal("1000")  # PKR 1000 base investment for the explainer

DEFAULT_SETTINGS = [
    (1, Decimal("20.00"), "Level 1 - Direct Partnership"),
    (2, Decimal("15.00"), "Level 2 - Extended Partnership"),
    (3, Decimal("10.00"), "Level 3 - Network Partnership"),
    (4, Decimal("8.00"), "Level 4 - Community Partnership"),
    (5, Decimal("7.00"), "Level 5 - Team Partnership"),
]


class RateEntry(NamedTuple):
    level: int
    rate: Decimal
    description: Optional[str]


_cache: Dict[str, Any] = {"entries": None, "expires": 0.0}


class CommissionRateHelper:
    """
    Level -> percentage table. Rates are whole-percentage units: 15.00 means 15%.
    Only active rows take part in attribution.
    """

    @staticmethod
    def clear_cache() -> None:
        _cache["entries"] = None
        _cache["expires"] = 0.0

    @staticmethod
    def get_active_settings(fresh: bool = False) -> List[RateEntry]:
        """
        Active settings sorted by level, cached per process for COMMISSION_CACHE_SECONDS.
        fresh=True always reads the table; attribution uses it so a rate change
        made through another worker applies to the next purchase.
        """
        ttl = current_app.config.get("COMMISSION_CACHE_SECONDS", 300)
        now = time.monotonic()
        if not fresh and ttl > 0 and _cache["entries"] is not None and now < _cache["expires"]:
            return _cache["entries"]

        rows = CommissionSetting.query.filter_by(is_active=True).order_by(CommissionSetting.level.asc()).all()
        entries = [RateEntry(row.level, Decimal(str(row.rate)), row.description) for row in rows]

        if ttl > 0:
            _cache["entries"] = entries
            _cache["expires"] = now + ttl
        return entries

    @staticmethod
    def get_rate(level: int, fresh: bool = False) -> Optional[Decimal]:
        """Rate of the active setting for `level`, or None when the level pays nothing."""
        for entry in CommissionRateHelper.get_active_settings(fresh=fresh):
            if entry.level == level:
                return entry.rate
        return None

    @staticmethod
    def commission_for(amount: Decimal, rate: Decimal) -> Decimal:
        return round_money(Decimal(str(amount)) * Decimal(str(rate)) / Decimal("100"))

    @staticmethod
    def calculate_commission(amount, level: int) -> Decimal:
        rate = CommissionRateHelper.get_rate(level)
        if rate is None:
            return Decimal("0.00")
        return CommissionRateHelper.commission_for(amount, rate)

    @staticmethod
    def calculate_all_levels(amount) -> List[Dict[str, Any]]:
        return [
            {
                "level": entry.level,
                "rate": entry.rate,
                "commission": CommissionRateHelper.commission_for(amount, entry.rate),
            }
            for entry in CommissionRateHelper.get_active_settings()
        ]

    @staticmethod
    def total_possible_commission(amount) -> Decimal:
        total_rate = sum((entry.rate for entry in CommissionRateHelper.get_active_settings()), Decimal("0"))
        return CommissionRateHelper.commission_for(amount, total_rate)

    @staticmethod
    def public_rate_table() -> List[Dict[str, Any]]:
        """Active levels for the "how commissions work" page, level ascending."""
        return [
            {
                "level": entry.level,
                "rate": float(entry.rate),
                "description": entry.description,
                "exampleAmount": float(CommissionRateHelper.commission_for(EXAMPLE_BASE_AMOUNT, entry.rate)),
            }
            for entry in CommissionRateHelper.get_active_settings()
        ]

    # -------------------------
    # Admin writes
    # -------------------------
    @staticmethod
    def all_settings() -> List[CommissionSetting]:
        return CommissionSetting.query.order_by(CommissionSetting.level.asc()).all()

    @staticmethod
    def seed_defaults(actor_id: int = None, reset: bool = False) -> List[CommissionSetting]:
        """Create the default five levels. With reset=True existing rows are replaced."""
        if reset:
            CommissionSetting.query.delete()
            db.session.flush()

        existing = {row.level for row in CommissionSetting.query.all()}
        for level, rate, description in DEFAULT_SETTINGS:
            if level in existing:
                continue
            db.session.add(CommissionSetting(
                level=level,
                rate=rate,
                description=description,
                is_active=True,
                updated_by=actor_id,
            ))
        db.session.commit()
        CommissionRateHelper.clear_cache()
        commission_logger.info(f"Commission settings seeded (reset={reset}) by {actor_id}")
        return CommissionRateHelper.all_settings()

    @staticmethod
    def validate_settings_payload(settings) -> List[Dict[str, Any]]:
        """Validate every entry before anything is written; one bad entry rejects the batch."""
        if not isinstance(settings, list) or not settings:
            raise ValidationError("settings must be a non-empty list")

        cleaned = []
        seen = set()
        for raw in settings:
            if not isinstance(raw, dict):
                raise ValidationError("each setting must be an object")
            level = parse_int(raw.get("level"), "level", minimum=1, maximum=MAX_LEVEL)
            if level in seen:
                raise ValidationError(f"level {level} appears more than once")
            seen.add(level)

            rate = parse_amount(raw.get("rate"), "rate", allow_zero=True)
            if rate > Decimal("100"):
                raise ValidationError("rate must be between 0 and 100")

            is_active = raw.get("isActive", True)
            if not isinstance(is_active, bool):
                raise ValidationError("isActive must be a boolean")

            description = raw.get("description")
            if description is not None and not isinstance(description, str):
                raise ValidationError("description must be a string")

            cleaned.append({"level": level, "rate": rate, "is_active": is_active, "description": description})
        return cleaned

    @staticmethod
    def update_settings(settings, actor_id: int) -> List[CommissionSetting]:
        """Upsert settings by level."""
        cleaned = CommissionRateHelper.validate_settings_payload(settings)

        try:
            for entry in cleaned:
                row = CommissionSetting.query.filter_by(level=entry["level"]).first()
                if row is None:
                    row = CommissionSetting(level=entry["level"])
                    db.session.add(row)
                row.rate = entry["rate"]
                row.is_active = entry["is_active"]
                if entry["description"] is not None:
                    row.description = entry["description"]
                row.updated_by = actor_id
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        finally:
            CommissionRateHelper.clear_cache()

        commission_logger.info(
            f"Commission settings updated by admin {actor_id}: "
            + ", ".join(f"L{e['level']}={e['rate']}%{'' if e['is_active'] else ' (inactive)'}" for e in cleaned)
        )
        return CommissionRateHelper.all_settings()
