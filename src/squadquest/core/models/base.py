"""模型基类

存储文档与 HTTP 响应统一使用 camelCase 字段名，
Python 侧使用 snake_case 属性。
"""

from typing import Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..store import DocumentSnapshot


class CamelModel(BaseModel):
    """camelCase 别名模型"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DocumentModel(CamelModel):
    """文档模型 -- doc_id 不写入文档内容，未知字段忽略"""

    model_config = ConfigDict(extra="ignore")

    # 承载 doc_id 的属性名
    ID_FIELD: ClassVar[str] = "id"

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> Self:
        return cls.model_validate({**snapshot.to_dict(), cls.ID_FIELD: snapshot.id})

    def to_document(self) -> dict[str, Any]:
        """序列化为存储文档（不含 doc_id）"""
        return self.model_dump(by_alias=True, exclude={self.ID_FIELD})
