# Overview: Pytest coverage for unit-of-measure conversion.

import itertools
from decimal import Decimal

import pytest

from wareledger.errors import CyclicUnitGraph, IncompatibleUnits, ValidationError
from wareledger.services import unit_service
from wareledger.services.unit_service import UnitNode


class TestConvert:

    def test_derived_to_base(self, piece, box):
        assert unit_service.convert(2, box.id, piece.id) == Decimal('24')

    def test_base_to_derived_keeps_fraction(self, piece, box):
        assert unit_service.convert(30, piece.id, box.id) == Decimal('2.5')

    def test_same_unit_is_quantized(self, piece):
        result = unit_service.convert('1.5', piece.id, piece.id)
        assert result == Decimal('1.5')
        assert result.as_tuple().exponent == -6

    def test_chain_of_units(self, piece, box):
        """A carton of 10 boxes resolves through box down to pieces."""
        carton = unit_service.create_unit(
            code='ctn', name='Carton', base_unit_id=box.id, operator='*', operation_value=10
        )
        assert unit_service.convert(1, carton.id, piece.id) == Decimal('120')
        assert unit_service.convert(6, box.id, carton.id) == Decimal('0.6')

    def test_divide_operator(self, db_session):
        kg = unit_service.create_unit(code='kg', name='Kilogram')
        gram = unit_service.create_unit(code='g', name='Gram', base_unit_id=kg.id, operator='/', operation_value=1000)
        assert unit_service.convert(500, gram.id, kg.id) == Decimal('0.5')
        assert unit_service.convert('1.25', kg.id, gram.id) == Decimal('1250')

    def test_units_without_common_root(self, piece):
        kg = unit_service.create_unit(code='kg', name='Kilogram')
        with pytest.raises(IncompatibleUnits):
            unit_service.convert(1, piece.id, kg.id)

    def test_cycle_is_reported(self):
        graph = {
            1: UnitNode(id=1, base_unit_id=2, operator='*', operation_value=Decimal('2')),
            2: UnitNode(id=2, base_unit_id=1, operator='*', operation_value=Decimal('3')),
            3: UnitNode(id=3, base_unit_id=None, operator=None, operation_value=None),
        }
        with pytest.raises(CyclicUnitGraph):
            unit_service.convert(1, 1, 3, graph)


ROUND_TRIP_GRAPH = {
    1: UnitNode(id=1, base_unit_id=None, operator=None, operation_value=None),  # piece
    2: UnitNode(id=2, base_unit_id=1, operator='*', operation_value=Decimal('12')),  # box
    3: UnitNode(id=3, base_unit_id=2, operator='*', operation_value=Decimal('10')),  # carton
    4: UnitNode(id=4, base_unit_id=1, operator='/', operation_value=Decimal('1000')),  # milli
    5: UnitNode(id=5, base_unit_id=1, operator='/', operation_value=Decimal('3')),  # third
}


class TestRoundTrip:

    @pytest.mark.parametrize('from_id, to_id', list(itertools.permutations(ROUND_TRIP_GRAPH, 2)))
    @pytest.mark.parametrize('qty', ['7', '2.5', '0.333333', '1234.5678'])
    def test_there_and_back(self, from_id, to_id, qty):
        q = Decimal(qty)
        there = unit_service.convert(q, from_id, to_id, ROUND_TRIP_GRAPH)
        back = unit_service.convert(there, to_id, from_id, ROUND_TRIP_GRAPH)
        factor = max(unit_service.convert(1, to_id, from_id, ROUND_TRIP_GRAPH), Decimal('1'))
        assert abs(back - q) <= Decimal('0.000001') * factor


class TestCreateUnit:

    def test_rejects_unknown_operator(self, piece):
        with pytest.raises(ValidationError):
            unit_service.create_unit(code='dz', name='Dozen', base_unit_id=piece.id, operator='+', operation_value=12)

    def test_rejects_non_positive_value(self, piece):
        with pytest.raises(ValidationError):
            unit_service.create_unit(code='dz', name='Dozen', base_unit_id=piece.id, operator='*', operation_value=0)

    def test_root_unit_drops_operator(self, db_session):
        unit = unit_service.create_unit(code='l', name='Litre', operator='*', operation_value=5)
        assert unit.base_unit_id is None
        assert unit.operator is None
