"""呼び出し側の入力エラーです。 / Caller input errors."""

from __future__ import annotations


class InputValidationError(ValueError):
    """入力不備で判定できません。 / Request cannot be judged as given."""
