"""화폐 환산 — 모든 화폐를 가능한 높은 단위로 모은다

기준 화폐(gp) 단위로 합산한 뒤 큰 단위부터 채운다.
분수 연산으로 부동소수점 오차 없음.
"""

import math
from fractions import Fraction
from typing import Mapping

from .rules import DEFAULT_RULES, RuleConfig


def convert_currency(
    currency: Mapping[str, int],
    rules: RuleConfig = DEFAULT_RULES,
) -> dict[str, int]:
    """환산 결과 dict 반환. 입력은 변경하지 않는다.

    예: {"cp": 250} → {"pp": 0, "gp": 2, "ep": 1, "sp": 0, "cp": 0}
    """
    ordered = sorted(rules.currencies.items(), key=lambda kv: kv[1])
    basis = Fraction(0)
    for denomination, conversion in ordered:
        if not conversion:
            continue
        basis += Fraction(int(currency.get(denomination) or 0)) / conversion

    result = dict(currency)
    for denomination, conversion in ordered:
        if not conversion:
            continue
        amount = math.floor(basis * conversion)
        result[denomination] = amount
        basis -= Fraction(amount) / conversion
    return result
