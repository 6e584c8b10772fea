"""Comments attached to batik entries."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from flask import current_app

from batik_api.audit_logging import audit_event
from batik_api.auth import Caller, require_caller
from batik_api.db_adapter import Comment, commit, db
from batik_api.entries import get as get_entry
from batik_api.errors import Forbidden, NotFound, ValidationError
from batik_api.schemas import CommentFields, require_fields

logger = logging.getLogger(__name__)


def list_comments(entry_id: int) -> list[Comment]:
    return list(get_entry(entry_id).comments)


def add_comment(caller: Caller | None, entry_id: int, fields: Mapping[str, Any]) -> Comment:
    caller = require_caller(caller)
    batik = get_entry(entry_id)
    form = require_fields(CommentFields, fields)
    limit = int(current_app.config.get("MAX_COMMENT_LENGTH", 1000))
    if len(form.content) > limit:
        raise ValidationError({"content": [f"The content field must not be greater than {limit} characters."]})

    comment = Comment(batik_id=batik.id, user_id=caller.id, content=form.content)
    db.session.add(comment)
    commit("comment_insert", user_id=caller.id, batik_id=batik.id)
    audit_event("comment_created", user_id=caller.id, batik_id=batik.id, comment_id=comment.id)
    return comment


def remove_comment(caller: Caller | None, comment_id: int) -> None:
    caller = require_caller(caller)
    comment = db.session.get(Comment, comment_id)
    if comment is None:
        raise NotFound("Comment not found.")
    if comment.user_id != caller.id:
        raise Forbidden("You do not have permission to delete this comment.")
    db.session.delete(comment)
    commit("comment_delete", user_id=caller.id, comment_id=comment_id)
    audit_event("comment_deleted", user_id=caller.id, comment_id=comment_id)
