"""Tests unitarios para la resolución de identificadores de pedido."""

import pytest

from app.utils.id_utils import same_identifier, try_parse_order_id


class TestTryParseOrderId:
    """Tests para try_parse_order_id."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (555, 555),
            ("555", 555),
            (" 555 ", 555),
            ("+42", 42),
            (555.0, 555),
            ("555.00", 555),
            (0, 0),
        ],
    )
    def test_resolvable_values(self, value, expected):
        """Debe resolver enteros, cadenas numéricas y floats enteros."""
        assert try_parse_order_id(value) == expected

    @pytest.mark.parametrize("value", [None, True, False, -1, 5.5, "", "abc", "12a", "5.5", [], {}])
    def test_unresolvable_values(self, value):
        """Debe devolver None para valores no resolubles."""
        assert try_parse_order_id(value) is None


class TestSameIdentifier:
    """Tests para same_identifier."""

    def test_int_and_string_match(self):
        """Debe considerar iguales 1 y "1"."""
        assert same_identifier(1, "1")
        assert same_identifier("A-1", " A-1 ")

    def test_different_ids(self):
        """Debe distinguir identificadores distintos."""
        assert not same_identifier(1, 2)
        assert not same_identifier("A-1", "A-2")

    def test_none_never_matches(self):
        """Debe no emparejar identificadores ausentes."""
        assert not same_identifier(None, None)
        assert not same_identifier(None, "None")
