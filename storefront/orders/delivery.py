# module storefront.orders.delivery
"""
Calcul des délais de livraison (fonctions pures).

- compute_delivery_minutes: délai par défaut d'un produit (instantané = 60 min, N jours = N*1440).
- parse_delivery_minutes_from_addons: option « delivery » choisie par le client.
- resolve_delivery_minutes: option client sinon défaut produit, borné à [60 min, 30 jours].
- get_delivery_text / due_at: libellé affiché et échéance.
Aucune fonction ne lève d'exception sur une donnée mal formée: on retombe sur la valeur par défaut.
"""
import math
import re
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional

INSTANT_DELIVERY_MINUTES = 60
MINUTES_PER_DAY = 24 * 60
MIN_DELIVERY_MINUTES = INSTANT_DELIVERY_MINUTES
MAX_DELIVERY_MINUTES = 30 * MINUTES_PER_DAY

# Champs produit portant le nombre de jours, par ordre de priorité
DELIVERY_DAYS_FIELDS = ("delivery_days", "normal_delivery_text", "delivery_time_days")

_INT_RE = re.compile(r"-?\d+")
_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_HOURS_RE = re.compile(r"(\d+)\s*(?:h|hour)")
_DAYS_RE = re.compile(r"(\d+)\s*(?:d|day)")


def is_instant(flag: Any) -> bool:
    """True pour True, 1 ou "1" (les autres valeurs, y compris "true", sont ignorées)."""
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, (int, float)):
        return flag == 1
    if isinstance(flag, str):
        return flag.strip() == "1"
    return False


def parse_day_count(value: Any) -> Optional[int]:
    """Premier entier d'un texte libre, ou valeur numérique; None si absent ou <= 0."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        days = int(value)
    else:
        match = _INT_RE.search(str(value))
        if not match:
            return None
        days = int(match.group(0))
    return days if days > 0 else None


def compute_delivery_minutes(product: Optional[Mapping[str, Any]], fallback_minutes: int = 60) -> int:
    """
    Délai de livraison en minutes pour un produit.
    - Livraison instantanée: 60, quel que soit le nombre de jours stocké.
    - Sinon premier nombre de jours positif trouvé: jours * 1440.
    - Sinon fallback_minutes (jamais <= 0).
    """
    fallback = fallback_minutes if isinstance(fallback_minutes, int) and fallback_minutes > 0 else INSTANT_DELIVERY_MINUTES
    if not product:
        return fallback
    if is_instant(product.get("instant_delivery")):
        return INSTANT_DELIVERY_MINUTES
    for field in DELIVERY_DAYS_FIELDS:
        days = parse_day_count(product.get(field))
        if days:
            return days * MINUTES_PER_DAY
    return fallback


def parse_delivery_minutes_from_addons(addons: Optional[Iterable[Mapping[str, Any]]]) -> Optional[int]:
    """
    Délai choisi via une option dont le champ contient « delivery ».
    Valeurs reconnues: nombre (<= 30: jours, sinon minutes), "instant", "N hours", "N days", "24"/"48".
    """
    if not addons:
        return None
    for item in addons:
        if not isinstance(item, Mapping):
            continue
        field = str(item.get("field") or "").lower()
        if "delivery" not in field:
            continue
        raw = item.get("value")
        text = str(raw if raw is not None else "").strip().lower()

        number = None
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            number = float(raw)
        elif _NUMBER_RE.match(text):
            number = float(text)
        if number is not None and math.isfinite(number) and number > 0:
            if number <= 30:
                return int(round(number * MINUTES_PER_DAY))
            return int(round(number))

        if not text:
            continue
        if "instant" in text:
            return INSTANT_DELIVERY_MINUTES
        hours = _HOURS_RE.search(text)
        if hours:
            return int(hours.group(1)) * 60
        days = _DAYS_RE.search(text)
        if days:
            return int(days.group(1)) * MINUTES_PER_DAY
        if "24" in text:
            return MINUTES_PER_DAY
        if "48" in text:
            return 2 * MINUTES_PER_DAY
    return None


def clamp_delivery_minutes(minutes: Optional[int]) -> int:
    if not minutes or minutes < MIN_DELIVERY_MINUTES:
        return MIN_DELIVERY_MINUTES
    return min(int(minutes), MAX_DELIVERY_MINUTES)


def resolve_delivery_minutes(product: Optional[Mapping[str, Any]], addons=None, fallback_minutes: int = 60) -> int:
    """Option « delivery » du client si présente, sinon délai produit; borné à [60, 43200]."""
    minutes = parse_delivery_minutes_from_addons(addons) or compute_delivery_minutes(product, fallback_minutes)
    return clamp_delivery_minutes(minutes)


def get_delivery_text(instant: Any, delivery_days: Any) -> str:
    if is_instant(instant):
        return "Instant Delivery In 60 Minutes"
    days = None
    if isinstance(delivery_days, (int, float)) and not isinstance(delivery_days, bool):
        days = int(delivery_days) if math.isfinite(delivery_days) else None
    elif isinstance(delivery_days, str) and delivery_days.strip():
        match = re.match(r"\s*-?\d+", delivery_days)
        days = int(match.group(0)) if match else None
    if days == 1:
        return "24 Hours Express Delivery"
    if days is not None and days > 0:
        return f"{days} Days Delivery"
    return "2 Days Delivery"


def delivery_text_for_minutes(minutes: Any) -> str:
    """Libellé d'une commande à partir de son délai enregistré (jours entiers, sinon heures)."""
    total = clamp_delivery_minutes(minutes if isinstance(minutes, int) and not isinstance(minutes, bool) else None)
    if total <= INSTANT_DELIVERY_MINUTES:
        return get_delivery_text(True, None)
    if total % MINUTES_PER_DAY == 0:
        return get_delivery_text(False, total // MINUTES_PER_DAY)
    return f"{math.ceil(total / 60)} Hours Delivery"


def due_at(created_at: datetime, minutes: int) -> datetime:
    """Échéance de livraison: created_at + minutes (minutes bornées comme à la création)."""
    return created_at + timedelta(minutes=clamp_delivery_minutes(minutes))
