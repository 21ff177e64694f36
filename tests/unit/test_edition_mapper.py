"""Edition request mapping tests."""

import json
from dataclasses import replace
from datetime import date

import pytest

from attestation_platform.domain.services.edition_mapper import (
    build_edition_request,
    certificate_color,
    contract_duration_months,
    energy_source,
    premium_breakdown,
    seating_capacity,
    validate_edition_request,
    vehicle_category,
    vehicle_genre,
)


class TestBuildEditionRequest:
    """Test building the provider payload from registry data."""

    def test_sample_policy_is_valid(self, policy, insured):
        payload = build_edition_request(policy, insured, "COMP01", today=date(2024, 1, 2))

        assert validate_edition_request(payload) == []
        assert payload["code_compagnie"] == "COMP01"
        assert payload["date_demande_edition"] == "2024-01-02"
        assert payload["date_effet"] == "2024-01-01"
        assert payload["numero_immatriculation"] == "AB-123-CD"
        assert payload["numero_carte_brune_physique"] == "CB0001240102"

    def test_codes(self, policy, insured):
        payload = build_edition_request(policy, insured, "COMP01", today=date(2024, 1, 2))

        assert payload["genre_vehicule"] == "GV04"
        assert payload["type_vehicule"] == "TV10"
        assert payload["usage_vehicule"] == "UV01"
        assert payload["categorie_vehicule"] == "01"
        assert payload["source_energie"] == "SEES"
        assert payload["profession_assure"] == "ST09"
        assert payload["type_souscripteur"] == "TSPP"
        assert payload["type_assure"] == "TAPP"
        assert payload["code_nature_attestation"] == "JAUN"

    def test_amounts(self, policy, insured):
        """Net premium 100000 gives 5% accessories, 18% taxes, 1% FGA and the card fee."""
        payload = build_edition_request(policy, insured, "COMP01")

        assert payload["montant_prime_nette_total"] == "100000"
        assert payload["montant_accessoires"] == "5000"
        assert payload["montant_taxes"] == "18000"
        assert payload["fga"] == "1000"
        assert payload["montant_carte_brune"] == "5000"
        assert payload["montant_prime_ttc"] == "129000"
        assert payload["rc"] == "10000000"
        assert payload["montant_autres_garanties"] == "150000"

    def test_company_insured_and_defaults(self, policy, insured):
        company = replace(insured, type="company", email=None, phone=None, profession="astronaut")
        payload = build_edition_request(policy, company, "COMP01", agent_code="AG7")

        assert payload["type_souscripteur"] == "TSPM"
        assert payload["type_assure"] == "TAPM"
        assert payload["adresse_mail_assure"] == "noemail@example.com"
        assert payload["numero_telephone_assure"] == "0000000000"
        assert payload["profession_assure"] == "ST12"
        assert payload["code_point_vente_compagnie"] == "AG7"

    def test_contract_json(self, policy, insured):
        payload = build_edition_request(policy, insured, "COMP01")
        assert json.loads(payload["contrat"]) == {"policyNumber": "POL-2024-0001", "type": "AUTO", "duration": 12}


class TestCodeMapping:

    @pytest.mark.parametrize("kind,expected", [
        ("motorcycle", "GV03"),
        ("Heavy Truck", "GV01"),
        ("utility van", "GV02"),
        ("bus", "GV06"),
        (None, "GV04"),
    ])
    def test_vehicle_genre(self, kind, expected):
        assert vehicle_genre(kind) == expected

    @pytest.mark.parametrize("kind,usage,expected", [
        ("passenger_car", "taxi", "04"),
        ("truck", "commercial", "03"),
        ("motorcycle", "personal", "05"),
        ("passenger_car", "rental", "08"),
        ("passenger_car", "driving_school", "07"),
        ("passenger_car", None, "01"),
    ])
    def test_vehicle_category(self, kind, usage, expected):
        assert vehicle_category(kind, usage) == expected

    @pytest.mark.parametrize("year,model,expected", [
        (2020, "Leaf Electric", "SEEL"),
        (2020, "Prius Hybrid", "SEHY"),
        (2020, "Hilux Diesel", "SEDI"),
        (2019, "Corolla", "SEES"),
        (2010, "Corolla", "SEDI"),
        (None, None, "SEDI"),
    ])
    def test_energy_source(self, year, model, expected):
        assert energy_source(year, model) == expected

    def test_color_and_seats(self):
        assert certificate_color("taxi") == "BLMA"
        assert certificate_color("commercial") == "BRUN"
        assert certificate_color("public_transport") == "VERT"
        assert seating_capacity("minibus") == "15"
        assert seating_capacity("bus") == "50"

    def test_contract_duration(self):
        assert contract_duration_months(date(2024, 1, 1), date(2024, 7, 1)) == 6
        assert contract_duration_months(None, date(2024, 7, 1)) == 0

    def test_premium_breakdown_rounds(self):
        assert premium_breakdown(12345) == {
            "accessories": 617,
            "taxes": 2222,
            "card_fee": 5000,
            "fga": 123,
            "total": 12345 + 617 + 2222 + 5000 + 123,
        }


class TestValidation:

    def test_missing_required(self):
        errors = validate_edition_request({})
        assert "code_compagnie is required" in errors
        assert "code_nature_attestation is required" in errors

    def test_bad_formats(self, policy, insured):
        payload = build_edition_request(policy, insured, "COMP01")
        payload["date_effet"] = "01/01/2024"
        payload["adresse_mail_souscripteur"] = "nobody"
        payload["source_energie"] = "COAL"

        assert validate_edition_request(payload) == [
            "date_effet must be in YYYY-MM-DD format",
            "adresse_mail_souscripteur must be a valid email address",
            "source_energie value 'COAL' is not valid",
        ]
