from __future__ import annotations

import logging

from inbox.models import Message
from inbox.storage.sqlite_store import RemarkStore

logger = logging.getLogger(__name__)


class RemarkEditor:
    """Edit flow for one conversation's remark; the Remark Store is written on save."""

    def __init__(
        self,
        message_id: str,
        nickname: str,
        remarks: RemarkStore,
        current_remark: str | None = None,
    ) -> None:
        self.message_id = message_id
        self.nickname = nickname
        self.remarks = remarks

        saved = remarks.get_remark(message_id)
        if saved is not None:
            self.remark = saved
        else:
            self.remark = current_remark or ""
        self.original_remark = self.remark

    @classmethod
    def for_message(cls, message: Message, remarks: RemarkStore) -> RemarkEditor:
        return cls(message.message_id, message.nickname, remarks, current_remark=message.remark)

    def has_changes(self, original_remark: str | None = None) -> bool:
        baseline = self.original_remark if original_remark is None else original_remark
        return self.remark != baseline

    def save(self) -> str:
        self.remarks.set_remark(self.message_id, self.nickname, self.remark)
        self.original_remark = self.remark
        logger.info("Remark saved for %s", self.message_id)
        return self.remark
