from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict

__all__ = ["_BaseModel", "_FrozenModel"]


class _BaseModel(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        validate_assignment=True,
        validate_default=True,
        serialize_by_alias=True,
        validate_by_name=True,
    )

    if not TYPE_CHECKING:

        def model_dump_json(self, **kwargs: Any) -> str:
            kwargs.setdefault("by_alias", True)
            return super().model_dump_json(**kwargs)

        def model_dump(self, **kwargs: Any) -> dict[str, Any]:
            kwargs.setdefault("by_alias", True)
            return super().model_dump(**kwargs)


class _FrozenModel(_BaseModel):
    """Immutable value model.

    Instances may be shared between writers; "changing" one
    means building a new instance with `model_copy(update=...)`.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)
