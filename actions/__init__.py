from __future__ import annotations

from typing import Any, Callable

from actions.documents import document_create, document_delete, document_get, document_list, document_update
from actions.email_templates import email_template_delete, email_template_get, email_template_list, email_template_upsert
from actions.hiring_managers import hm_create, hm_get, hm_history_list, hm_list, hm_note_add, hm_notes_list, hm_update
from actions.hm_transfer import hm_transfer_approve, hm_transfer_create, hm_transfer_deny, hm_transfer_get
from actions.maintenance import archive_cleanup_run
from actions.organizations import (
    org_create,
    org_delete,
    org_documents_list,
    org_get,
    org_history_list,
    org_list,
    org_note_add,
    org_notes_list,
    org_update,
)
from actions.tasks import (
    task_bulk_update,
    task_complete,
    task_create,
    task_delete,
    task_get,
    task_history_list,
    task_incomplete,
    task_list,
    task_note_add,
    task_notes_list,
    task_reminders_diagnose,
    task_reminders_run,
    task_stats,
    task_update,
)
from actions.teams import (
    office_create,
    office_list,
    team_create,
    team_delete,
    team_get,
    team_list,
    team_member_add,
    team_member_remove,
    team_update,
)
from actions.users import (
    get_me,
    login,
    logout,
    user_create,
    user_delete,
    user_get,
    user_list,
    user_search,
    user_stats,
    user_update_password,
    user_update_profile,
)
from utils import ApiError, AuthContext


ACTIONS: dict[str, Callable[..., Any]] = {
    "LOGIN": login,
    "LOGOUT": logout,
    "GET_ME": get_me,
    "USER_CREATE": user_create,
    "USER_LIST": user_list,
    "USER_GET": user_get,
    "USER_SEARCH": user_search,
    "USER_STATS": user_stats,
    "USER_UPDATE_PROFILE": user_update_profile,
    "USER_UPDATE_PASSWORD": user_update_password,
    "USER_DELETE": user_delete,
    "OFFICE_CREATE": office_create,
    "OFFICE_LIST": office_list,
    "TEAM_CREATE": team_create,
    "TEAM_LIST": team_list,
    "TEAM_GET": team_get,
    "TEAM_UPDATE": team_update,
    "TEAM_DELETE": team_delete,
    "TEAM_MEMBER_ADD": team_member_add,
    "TEAM_MEMBER_REMOVE": team_member_remove,
    "ORG_CREATE": org_create,
    "ORG_LIST": org_list,
    "ORG_GET": org_get,
    "ORG_UPDATE": org_update,
    "ORG_DELETE": org_delete,
    "ORG_NOTE_ADD": org_note_add,
    "ORG_NOTES_LIST": org_notes_list,
    "ORG_HISTORY_LIST": org_history_list,
    "ORG_DOCUMENTS_LIST": org_documents_list,
    "HM_CREATE": hm_create,
    "HM_LIST": hm_list,
    "HM_GET": hm_get,
    "HM_UPDATE": hm_update,
    "HM_NOTE_ADD": hm_note_add,
    "HM_NOTES_LIST": hm_notes_list,
    "HM_HISTORY_LIST": hm_history_list,
    "HM_TRANSFER_CREATE": hm_transfer_create,
    "HM_TRANSFER_GET": hm_transfer_get,
    "HM_TRANSFER_APPROVE": hm_transfer_approve,
    "HM_TRANSFER_DENY": hm_transfer_deny,
    "TASK_CREATE": task_create,
    "TASK_LIST": task_list,
    "TASK_GET": task_get,
    "TASK_UPDATE": task_update,
    "TASK_DELETE": task_delete,
    "TASK_BULK_UPDATE": task_bulk_update,
    "TASK_COMPLETE": task_complete,
    "TASK_INCOMPLETE": task_incomplete,
    "TASK_NOTE_ADD": task_note_add,
    "TASK_NOTES_LIST": task_notes_list,
    "TASK_HISTORY_LIST": task_history_list,
    "TASK_STATS": task_stats,
    "TASK_REMINDERS_DIAGNOSE": task_reminders_diagnose,
    "TASK_REMINDERS_RUN": task_reminders_run,
    "DOCUMENT_CREATE": document_create,
    "DOCUMENT_LIST": document_list,
    "DOCUMENT_GET": document_get,
    "DOCUMENT_UPDATE": document_update,
    "DOCUMENT_DELETE": document_delete,
    "EMAIL_TEMPLATE_LIST": email_template_list,
    "EMAIL_TEMPLATE_GET": email_template_get,
    "EMAIL_TEMPLATE_UPSERT": email_template_upsert,
    "EMAIL_TEMPLATE_DELETE": email_template_delete,
    "ARCHIVE_CLEANUP_RUN": archive_cleanup_run,
}


def dispatch(action: str, data: dict, auth: AuthContext | None, db, cfg) -> Any:
    action_u = str(action or "").upper().strip()
    fn = ACTIONS.get(action_u)
    if fn is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    return fn(data or {}, auth, db, cfg)
