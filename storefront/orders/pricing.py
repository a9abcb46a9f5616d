# module storefront.orders.pricing
"""
Prix de référence calculé côté serveur (jamais le montant envoyé par le client).

- Prix de base: sale_price s'il est renseigné, sinon normal_price.
- Options: somme des suppléments des options choisies (champ/valeur normalisés, insensible à la casse).
- Coupon: actif, dans sa période de validité, non épuisé, applicable au produit et seuil
  minimum atteint -> remise en pourcentage ou fixe, plancher à 0.
  Un coupon inconnu, expiré ou inapplicable est ignoré sans erreur.
- Arrondi final à 2 décimales (ROUND_HALF_UP).
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional
import json
import logging
import math
import re

from storefront.utils.errors import InvalidProduct

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


def _slug(value: Any) -> str:
    return _NON_ALNUM.sub("-", str(value or "").lower().strip())


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def base_price(product: Optional[Mapping[str, Any]]) -> Decimal:
    """Prix de base du produit; InvalidProduct si produit absent ou prix non fini/négatif."""
    if not product:
        raise InvalidProduct("Product not found", status_code=404)
    sale = product.get("sale_price")
    if sale is not None and str(sale).strip() != "":
        raw = sale
    else:
        raw = product.get("normal_price", product.get("base_price"))
    price = _to_decimal(raw)
    if price is None or price < 0:
        raise InvalidProduct("Invalid product price")
    return price


def load_addon_definitions(raw: Any) -> List[dict]:
    """addons_json (texte JSON ou liste) -> liste de définitions; [] si illisible."""
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("orders.pricing invalid addons_json")
            return []
    if not isinstance(raw, list):
        return []
    return [d for d in raw if isinstance(d, dict)]


def _find_definition(index: Dict[str, dict], definitions: List[dict], field_name: str) -> Optional[dict]:
    field_id = _slug(field_name)
    found = index.get(field_name) or index.get(field_id)
    if found:
        return found
    for definition in definitions:
        if _slug(definition.get("id")) == field_id or _slug(definition.get("field")) == field_id:
            return definition
    return None


def calculate_addon_price(addon_definitions: Any, selected_addons: Optional[Iterable[Any]]) -> Decimal:
    """
    Somme des suppléments des options choisies.
    - Définition retrouvée par champ, libellé ou id (clé brute ou normalisée en tirets).
    - Valeur multiple séparée par des virgules (cases à cocher).
    - Option retrouvée par libellé ou valeur; entrées inconnues ou mal formées = 0.
    """
    definitions = load_addon_definitions(addon_definitions)
    if not definitions or not selected_addons:
        return Decimal("0")

    index: Dict[str, dict] = {}
    for definition in definitions:
        for key in ("field", "label", "id"):
            name = str(definition.get(key) or "").lower().strip()
            if name:
                index.setdefault(name, definition)
                index.setdefault(_slug(name), definition)

    total = Decimal("0")
    for selected in selected_addons:
        if not isinstance(selected, Mapping):
            continue
        field_name = str(selected.get("field") or "").lower().strip()
        if not field_name:
            continue
        definition = _find_definition(index, definitions, field_name)
        options = (definition or {}).get("options")
        if not isinstance(options, list):
            continue
        raw_value = str(selected.get("value") or "").strip()
        values = [v.strip().lower() for v in raw_value.split(",")] if "," in raw_value else [raw_value.lower()]
        for value in values:
            if not value:
                continue
            for option in options:
                if not isinstance(option, dict):
                    continue
                label = str(option.get("label") or "").lower().strip()
                opt_value = str(option.get("value") or "").lower().strip()
                if value in (label, opt_value) or (label and _slug(label) == _slug(value)):
                    delta = _to_decimal(option.get("price"))
                    if delta is not None:
                        total += delta
                    break
    return total


def _coupon_time(value: Any) -> Optional[datetime]:
    """Borne de validité: datetime, horodatage en millisecondes ou texte ISO 8601; None si absente/illisible."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and _NUMBER_RE.match(value.strip())):
        millis = float(value)
        if not math.isfinite(millis):
            return None
        try:
            return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("orders.pricing invalid coupon date value=%s", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def coupon_applies(coupon: Mapping[str, Any], product_id: Any = None, now: Optional[datetime] = None) -> bool:
    """
    Validité d'un coupon actif:
    - période [valid_from, valid_until] (bornes absentes = ouvertes)
    - max_uses > 0 et used_count >= max_uses -> épuisé
    - product_ids ("1,2" ou "all") doit contenir le produit
    """
    current = now or datetime.now(timezone.utc)
    starts = _coupon_time(coupon.get("valid_from"))
    if starts and starts > current:
        return False
    ends = _coupon_time(coupon.get("valid_until"))
    if ends and ends < current:
        return False
    max_uses = _to_decimal(coupon.get("max_uses")) or Decimal("0")
    used = _to_decimal(coupon.get("used_count")) or Decimal("0")
    if max_uses > 0 and used >= max_uses:
        return False
    allowed = coupon.get("product_ids")
    if allowed and product_id not in (None, ""):
        items = allowed if isinstance(allowed, (list, tuple)) else str(allowed).split(",")
        scope = {str(p).strip() for p in items if str(p).strip()}
        if scope and "all" not in scope and str(product_id) not in scope:
            return False
    return True


def apply_coupon(total: Decimal, coupon: Optional[Mapping[str, Any]], product_id: Any = None,
                 now: Optional[datetime] = None) -> Decimal:
    """Remise d'un coupon valide pour ce produit si le seuil est atteint; total inchangé sinon."""
    if not coupon or not coupon_applies(coupon, product_id, now):
        return total
    minimum = _to_decimal(coupon.get("min_order_amount")) or Decimal("0")
    if total < minimum:
        return total
    value = _to_decimal(coupon.get("discount_value"))
    if value is None:
        return total
    kind = str(coupon.get("discount_type") or "").lower()
    if kind == "percentage":
        return max(Decimal("0"), total - (total * value / Decimal("100")))
    if kind == "fixed":
        return max(Decimal("0"), total - value)
    return total


def compute_server_price(catalog, product_id: Any, selected_addons=None, coupon_code: Optional[str] = None) -> Decimal:
    """
    Prix de référence d'une commande.
    Étapes:
    - charge le produit via le catalogue (InvalidProduct si absent/prix invalide)
    - ajoute les suppléments d'options
    - applique le coupon (erreurs de coupon journalisées puis ignorées)
    - arrondit à 2 décimales
    """
    product = catalog.get_product(product_id)
    total = base_price(product) + calculate_addon_price(product.get("addons_json"), selected_addons)
    if coupon_code and str(coupon_code).strip():
        try:
            total = apply_coupon(total, catalog.get_active_coupon(str(coupon_code)), product_id)
        except Exception:
            logger.exception("orders.pricing.compute_server_price coupon ignored code=%s", coupon_code)
    return quantize(total)
