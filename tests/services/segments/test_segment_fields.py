"""
Testes do registro de campos de segmento.
"""
import pytest

from app.core.exceptions import UnknownSegmentFieldError
from app.services.segments.aggregates import AttributePath
from app.services.segments.fields import (
    SEGMENT_FIELDS,
    get_field_definition,
    list_fields,
    register_field,
    resolve,
)
from app.services.segments.types import Operator, ValueType

CATALOGO = {
    "age", "birthdayMonth", "gender", "city", "tags", "isOnboarded",
    "lifetimeOrderCount", "lifetimeSpend", "daysSinceLastOrder", "hasOrderInLastDays",
    "orderFrameBrand", "daysSinceLastExam", "hasExam", "rxExpiresInDays", "rxType",
    "hasFamilyMembers", "insuranceRenewalMonth", "hasActiveInsurance",
    "hasWalkinQuoteNoOrder", "daysSinceWalkin", "primaryUse", "wearsContacts",
}


class TestRegistro:
    def test_catalogo_completo(self):
        assert set(SEGMENT_FIELDS) == CATALOGO

    def test_resolve_campo_existente(self):
        definition = resolve("lifetimeOrderCount")

        assert definition is not None
        assert definition.value_type == ValueType.NUMBER
        assert definition.allows(Operator.GTE)
        assert not definition.is_direct

    def test_resolve_campo_inexistente(self):
        assert resolve("shoeSize") is None

    def test_get_field_definition_levanta(self):
        with pytest.raises(UnknownSegmentFieldError) as exc:
            get_field_definition("shoeSize")

        assert exc.value.field == "shoeSize"

    def test_atributo_direto(self):
        city = resolve("city")

        assert city.is_direct
        assert city.evaluation.pushdown_column == "city"

    def test_registro_selado(self):
        with pytest.raises(RuntimeError, match="selado"):
            register_field(
                "shoeSize", "Shoe Size", "Tamanho do calcado",
                ValueType.NUMBER, [Operator.EQ], AttributePath("shoe_size"),
            )

    def test_registro_imutavel(self):
        with pytest.raises(TypeError):
            SEGMENT_FIELDS["shoeSize"] = SEGMENT_FIELDS["age"]

    def test_list_fields_formato_ui(self):
        campos = {c["name"]: c for c in list_fields()}

        assert campos["daysSinceLastOrder"]["type"] == "number"
        assert campos["daysSinceLastOrder"]["operators"] == ["between", "gt", "gte", "lt", "lte"]
        assert campos["hasExam"]["operators"] == ["eq"]
        assert campos["age"]["label"] == "Customer Age"

    def test_enum_expoe_opcoes(self):
        campos = {c["name"]: c for c in list_fields()}

        assert campos["gender"]["options"] == ["FEMALE", "MALE", "OTHER", "PREFER_NOT_TO_SAY"]
        assert "options" not in campos["age"]
