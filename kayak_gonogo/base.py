"""判定モデルの基底定義です。 / Base definitions for go/no-go models."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict


class KayakBaseModel(BaseModel):
    """共通の不変ベースモデルです。 / Common immutable base model."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )

    def model_dump_jsonable(self, **kwargs: Any) -> dict[str, Any]:
        """JSON 直列化可能な辞書を返します。 / Dump JSON-serializable dict."""

        kwargs.setdefault("by_alias", True)
        return self.model_dump(mode="json", **kwargs)
