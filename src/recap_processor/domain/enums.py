"""
Доменные перечисления (enum).

Используются во всей системе:
- тип задачи в очереди
- вид документа (закрытый список)
- виды строк индексов в single-table хранилище
"""

from __future__ import annotations

import enum


class TaskType(str, enum.Enum):
    """
    Тип задачи (дискриминант сообщения очереди).
    """

    map = "map"
    reduce = "reduce"


class RecordKind(str, enum.Enum):
    """
    Вид документа протокола заседания.
    """

    minutes = "会議録"
    contents = "目次"
    index = "索引"
    appendix = "附録"
    supplement = "追録"


class IndexKind(str, enum.Enum):
    """
    Вид производной строки индекса.
    """

    category = "CATEGORY_INDEX"
    person = "PERSON_INDEX"
    keyword = "KEYWORD_INDEX"
    keyword_occurrence = "KEYWORD_OCCURRENCE"
    image_kind = "IMAGEKIND_INDEX"
    session = "SESSION_INDEX"
    house = "HOUSE_INDEX"
    meeting = "MEETING_INDEX"
