import pytest

from billing.utils.money import allocate_proportionally, from_cents, round2, to_cents


def test_to_cents_rounds_half_up():
    assert to_cents(19.99) == 1999
    assert to_cents(0.005) == 1
    assert to_cents(100) == 10000


def test_from_cents_handles_none():
    assert from_cents(None) == 0
    assert from_cents(1234) == 12.34


def test_allocate_fee_basket_split():
    # panier 90 + 10 et 3.00 de frais
    assert allocate_proportionally(3, [90, 10]) == [2.70, 0.30]


@pytest.mark.parametrize(
    "total,weights",
    [
        (10, [1, 1, 1]),
        (0.07, [33.33, 33.33, 33.34]),
        (5.55, [10, 20]),
        (1, [3]),
    ],
)
def test_allocate_sum_is_exact(total, weights):
    shares = allocate_proportionally(total, weights)
    assert len(shares) == len(weights)
    assert round2(sum(shares)) == round2(total)


def test_allocate_remainder_goes_to_last_item():
    assert allocate_proportionally(10, [1, 1, 1]) == [3.33, 3.33, 3.34]


def test_allocate_zero_weights_puts_everything_on_last():
    assert allocate_proportionally(4, [0, 0]) == [0.0, 4.0]


def test_allocate_empty_weights():
    assert allocate_proportionally(4, []) == []
