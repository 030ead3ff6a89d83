import re
import string
import secrets
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from commission.exceptions import ValidationError

CENT = Decimal("0.01")
# Largest value a Numeric(12, 2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")
HALF_CENT = Decimal("0.005")
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


def validate_email(email):
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email or "") is not None


def validate_phone(phone):
    return re.match(r'^\+?\d{9,15}$', phone or "") is not None


def round_money(value) -> Decimal:
    """The one rounding rule for money: nearest paisa, halves away from zero."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value, field="amount", allow_zero=False) -> Decimal:
    """
    Parse a user supplied amount into a Decimal rounded to the paisa.
    Rejects booleans, non-numeric strings, NaN/Infinity, non-positive values
    and anything too large to store.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required and must be numeric")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be numeric")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(amount) >= MAX_AMOUNT + HALF_CENT:
        raise ValidationError(f"{field} must be at most {MAX_AMOUNT}")
    amount = round_money(amount)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def parse_int(value, field, minimum=None, maximum=None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float) and value != number:
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return number


def generate_referral_code(exists, length=8):
    """
    Generate a referral code not accepted by `exists(code)`.
    `exists` is a callable so the lookup stays with the caller's session.
    """
    for _ in range(10):
        code = ''.join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))
        if not exists(code):
            return code
    # fallback
    return ''.join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length + 4))


def pagination_args(args, default_limit=20, max_limit=100):
    page = parse_int(args.get("page", 1), "page", minimum=1)
    limit = parse_int(args.get("limit", default_limit), "limit", minimum=1, maximum=max_limit)
    return page, limit


def paginate(query, page, limit):
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }
