"""Builds the provider's attestation edition request from registry data.

The provider expects its own code lists for vehicle genre/type/usage/category,
energy source, profession and certificate colour; registry values are free
text and are matched on keywords.

Premium breakdown (XOF):
    accessories = 5% of net premium
    taxes       = 18% of net premium
    FGA         = 1% of net premium (motor guarantee fund)
    card fee    = 5000 flat
"""

from __future__ import annotations

import json
import re
from datetime import date
from typing import Any, Optional

from attestation_platform.domain.entities.registry import InsuredData, PolicyData

VEHICLE_GENRES = {
    "TRUCK": "GV01",
    "VAN": "GV02",
    "MOTORCYCLE": "GV03",
    "CAR": "GV04",
    "BUS": "GV06",
}

VEHICLE_TYPES = {
    "passenger_car": "TV10",
    "commercial_vehicle": "TV11",
    "motorcycle": "TV13",
    "bus": "TV02",
    "taxi": "TV06",
    "ambulance": "TV01",
    "truck": "TV11",
}
DEFAULT_VEHICLE_TYPE = "TV10"

VEHICLE_USAGES = {
    "personal": "UV01",
    "commercial": "UV04",
    "taxi": "UV05",
    "rental": "UV07",
    "driving_school": "UV06",
}
DEFAULT_VEHICLE_USAGE = "UV01"

PROFESSIONS = {
    "farmer": "ST03",
    "employee": "ST09",
    "employer": "ST06",
    "artisan": "ST04",
    "retired": "ST08",
    "unemployed": "ST10",
    "sales_representative": "ST11",
    "commercial_agent": "ST01",
}
DEFAULT_PROFESSION = "ST12"

ENERGY_DIESEL = "SEDI"
ENERGY_ELECTRIC = "SEEL"
ENERGY_GASOLINE = "SEES"
ENERGY_HYBRID = "SEHY"

SUBSCRIBER_PHYSICAL, SUBSCRIBER_LEGAL = "TSPP", "TSPM"
INSURED_PHYSICAL, INSURED_LEGAL = "TAPP", "TAPM"

COLOR_YELLOW, COLOR_BROWN, COLOR_GREEN, COLOR_BLUE_MATCA = "JAUN", "BRUN", "VERT", "BLMA"

DEFAULT_RC_AMOUNT = "10000000"
CARD_FEE = 5000
DEFAULT_CIRCULATION_ZONE = "CIV002"

REQUIRED_FIELDS = (
    "code_compagnie",
    "date_demande_edition",
    "date_souscription",
    "date_effet",
    "date_echeance",
    "genre_vehicule",
    "numero_immatriculation",
    "type_vehicule",
    "model_vehicule",
    "categorie_vehicule",
    "usage_vehicule",
    "source_energie",
    "marque_vehicule",
    "numero_carte_brune_physique",
    "nom_souscripteur",
    "type_souscripteur",
    "adresse_mail_souscripteur",
    "numero_telephone_souscripteur",
    "nom_assure",
    "adresse_mail_assure",
    "numero_police",
    "numero_telephone_assure",
    "profession_assure",
    "code_point_vente_compagnie",
    "denomination_point_vente_compagnie",
    "rc",
    "code_nature_attestation",
)

VALID_CODES: dict[str, frozenset[str]] = {
    "genre_vehicule": frozenset(f"GV{n:02d}" for n in range(1, 13)),
    "type_vehicule": frozenset(f"TV{n:02d}" for n in range(1, 14)),
    "categorie_vehicule": frozenset(f"{n:02d}" for n in range(1, 13)),
    "usage_vehicule": frozenset(f"UV{n:02d}" for n in range(1, 13)),
    "source_energie": frozenset({ENERGY_GASOLINE, ENERGY_DIESEL, ENERGY_HYBRID, ENERGY_ELECTRIC}),
    "type_souscripteur": frozenset({SUBSCRIBER_PHYSICAL, SUBSCRIBER_LEGAL}),
    "type_assure": frozenset({INSURED_PHYSICAL, INSURED_LEGAL}),
    "profession_assure": frozenset(f"ST{n:02d}" for n in range(1, 13)),
    "code_nature_attestation": frozenset({
        COLOR_YELLOW, COLOR_BROWN, COLOR_GREEN, COLOR_BLUE_MATCA, "MARR", "ROUG", "BTPV",
    }),
}

_DATE_FIELDS = ("date_demande_edition", "date_souscription", "date_effet", "date_echeance")
_EMAIL_FIELDS = ("adresse_mail_souscripteur", "adresse_mail_assure")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _lower(value: Optional[str]) -> str:
    return (value or "").lower()


def _format_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def vehicle_genre(vehicle_type: Optional[str]) -> str:
    kind = _lower(vehicle_type)
    if "motorcycle" in kind or "scooter" in kind:
        return VEHICLE_GENRES["MOTORCYCLE"]
    if "truck" in kind or "lorry" in kind:
        return VEHICLE_GENRES["TRUCK"]
    if "van" in kind or "utility" in kind:
        return VEHICLE_GENRES["VAN"]
    if "bus" in kind:
        return VEHICLE_GENRES["BUS"]
    return VEHICLE_GENRES["CAR"]


def vehicle_category(vehicle_type: Optional[str], usage: Optional[str]) -> str:
    use = _lower(usage)
    if "taxi" in use:
        return "04"
    if "commercial" in use or "goods" in use:
        return "03"
    if "motorcycle" in _lower(vehicle_type):
        return "05"
    if "rental" in use:
        return "08"
    if "driving_school" in use:
        return "07"
    return "01"


def energy_source(vehicle_year: Optional[int], vehicle_model: Optional[str]) -> str:
    model = _lower(vehicle_model)
    if "electric" in model or "ev" in model.split():
        return ENERGY_ELECTRIC
    if "hybrid" in model:
        return ENERGY_HYBRID
    if "diesel" in model:
        return ENERGY_DIESEL
    if vehicle_year and vehicle_year > 2015:
        return ENERGY_GASOLINE
    return ENERGY_DIESEL


def certificate_color(usage: Optional[str]) -> str:
    use = _lower(usage)
    if "taxi" in use:
        return COLOR_BLUE_MATCA
    if "commercial" in use:
        return COLOR_BROWN
    if "public" in use:
        return COLOR_GREEN
    return COLOR_YELLOW


def seating_capacity(vehicle_type: Optional[str]) -> str:
    kind = _lower(vehicle_type)
    if "motorcycle" in kind:
        return "2"
    if "minibus" in kind:
        return "15"
    if "bus" in kind:
        return "50"
    if "truck" in kind:
        return "3"
    if "van" in kind:
        return "9"
    return "5"


def contract_duration_months(effective: Optional[date], expiration: Optional[date]) -> int:
    if not effective or not expiration:
        return 0
    return round(abs((expiration - effective).days) / 30)


def premium_breakdown(net_premium: float) -> dict[str, int]:
    """Split the net premium into the amounts the provider asks for."""
    accessories = round(net_premium * 0.05)
    taxes = round(net_premium * 0.18)
    fga = round(net_premium * 0.01)
    total = round(net_premium) + accessories + taxes + CARD_FEE + fga
    return {
        "accessories": accessories,
        "taxes": taxes,
        "card_fee": CARD_FEE,
        "fga": fga,
        "total": total,
    }


def build_edition_request(
    policy: PolicyData,
    insured: InsuredData,
    company_code: str,
    agent_code: Optional[str] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Build the edition payload for one vehicle.

    Args:
        policy: Registry policy.
        insured: Registry insured party.
        company_code: Insurer company code.
        agent_code: Sales point code (defaults to the main office).
        today: Edition request date (tests).

    Returns:
        Provider payload keyed by the provider's field names.
    """
    today = today or date.today()
    individual = insured.is_individual
    rc = policy.guarantees.get("rc")
    other_guarantees = sum(
        v for k, v in policy.guarantees.items() if k != "rc" and isinstance(v, (int, float))
    )
    amounts = premium_breakdown(policy.premium_amount)
    first_registration = date(policy.vehicle_year or 2020, 1, 1)

    return {
        "code_compagnie": company_code,
        "date_demande_edition": _format_date(today),
        "date_souscription": _format_date(policy.subscription_date),
        "date_effet": _format_date(policy.effective_date),
        "date_echeance": _format_date(policy.expiration_date),
        "genre_vehicule": vehicle_genre(policy.vehicle_type),
        "numero_immatriculation": policy.vehicle_registration or "",
        "type_vehicule": VEHICLE_TYPES.get(_lower(policy.vehicle_type), DEFAULT_VEHICLE_TYPE),
        "model_vehicule": policy.vehicle_model or "",
        "categorie_vehicule": vehicle_category(policy.vehicle_type, policy.vehicle_usage),
        "usage_vehicule": VEHICLE_USAGES.get(_lower(policy.vehicle_usage), DEFAULT_VEHICLE_USAGE),
        "source_energie": energy_source(policy.vehicle_year, policy.vehicle_model),
        "nombre_place": seating_capacity(policy.vehicle_type),
        "marque_vehicule": policy.vehicle_make or "",
        "numero_chassis": policy.vehicle_chassis_number or "NA",
        "numero_moteur": policy.vehicle_motor_number or "NA",
        "numero_carte_brune_physique": f"CB{policy.policy_number[-4:]}{today.strftime('%y%m%d')}",
        "numero_rccm": insured.company_registration or "NA",
        "bureau_enregistreur": "NA",
        "nom_souscripteur": insured.full_name,
        "type_souscripteur": SUBSCRIBER_PHYSICAL if individual else SUBSCRIBER_LEGAL,
        "adresse_mail_souscripteur": insured.email or "noemail@example.com",
        "numero_telephone_souscripteur": insured.phone or "0000000000",
        "boite_postale_souscripteur": "NA",
        "type_assure": INSURED_PHYSICAL if individual else INSURED_LEGAL,
        "nom_assure": insured.full_name,
        "adresse_mail_assure": insured.email or "noemail@example.com",
        "boite_postale_assure": "NA",
        "numero_police": policy.policy_number,
        "numero_telephone_assure": insured.phone or "0000000000",
        "profession_assure": PROFESSIONS.get(_lower(insured.profession), DEFAULT_PROFESSION),
        "type_point_vente_compagnie": "AGENCE",
        "code_point_vente_compagnie": agent_code or "MAIN",
        "denomination_point_vente_compagnie": "Point de vente principal",
        "rc": str(rc) if rc else DEFAULT_RC_AMOUNT,
        "code_nature_attestation": certificate_color(policy.vehicle_usage),
        "garantie": json.dumps(policy.guarantees, sort_keys=True),
        "contrat": json.dumps({
            "policyNumber": policy.policy_number,
            "type": "AUTO",
            "duration": contract_duration_months(policy.effective_date, policy.expiration_date),
        }),
        "zone_circulation": DEFAULT_CIRCULATION_ZONE,
        "date_premiere_mise_en_circulation": _format_date(first_registration),
        "montant_autres_garanties": str(other_guarantees),
        "montant_prime_nette_total": str(round(policy.premium_amount)),
        "montant_accessoires": str(amounts["accessories"]),
        "montant_taxes": str(amounts["taxes"]),
        "montant_carte_brune": str(amounts["card_fee"]),
        "fga": str(amounts["fga"]),
        "montant_prime_ttc": str(amounts["total"]),
    }


def validate_edition_request(payload: dict[str, Any]) -> list[str]:
    """Return the list of problems with an edition payload (empty if valid)."""
    errors = [f"{name} is required" for name in REQUIRED_FIELDS if not payload.get(name)]
    for name in _DATE_FIELDS:
        value = payload.get(name)
        if value and not _DATE_RE.match(str(value)):
            errors.append(f"{name} must be in YYYY-MM-DD format")
    for name in _EMAIL_FIELDS:
        value = payload.get(name)
        if value and not _EMAIL_RE.match(str(value)):
            errors.append(f"{name} must be a valid email address")
    for name, valid in VALID_CODES.items():
        value = payload.get(name)
        if value and value not in valid:
            errors.append(f"{name} value '{value}' is not valid")
    return errors
