from services.errors import ValidationError


def coerce_enum(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        raw = value.strip()
        for candidate in (raw, raw.lower(), raw.upper()):
            try:
                return enum_cls(candidate)
            except ValueError:
                continue
    allowed = sorted(m.value for m in enum_cls)
    raise ValidationError(f"Invalid {field}", allowed=allowed)


def require_positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{field} must be an integer")
    if number <= 0:
        raise ValidationError(f"{field} must be positive")
    return number


def clean_text(value, field: str, required: bool = False, max_len: int = 255):
    text = (value or "").strip() if isinstance(value, str) or value is None else None
    if text is None:
        raise ValidationError(f"{field} must be a string")
    if required and not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return text or None
